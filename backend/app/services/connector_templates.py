"""Built-in connector templates for popular public APIs.

A template is a complete connector configuration minus the caller's
credentials. ``build_connector_from_template`` merges the caller's
``authConfig`` over the template defaults. Providers that expect the key as a
query parameter keep a ``{{apiKey}}`` placeholder in the endpoint path; the
sync engine fills it in per request.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.models.connector import ConnectorCreate


@dataclass(frozen=True)
class ConnectorTemplate:
    id: str
    name: str
    description: str
    provider: str
    category: str
    base_url: str
    auth_type: str
    endpoint_config: List[Dict[str, Any]]
    field_mapping_config: Dict[str, Any]
    rate_limit_config: Dict[str, Any]
    auth_config: Dict[str, Any] = field(default_factory=dict)
    docs_url: Optional[str] = None
    signup_url: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "provider": self.provider,
            "category": self.category,
            "docsUrl": self.docs_url,
            "signupUrl": self.signup_url,
            "authType": self.auth_type,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        data.update(
            {
                "baseUrl": self.base_url,
                "authConfig": copy.deepcopy(self.auth_config),
                "endpointConfig": copy.deepcopy(self.endpoint_config),
                "fieldMappingConfig": copy.deepcopy(self.field_mapping_config),
                "rateLimitConfig": copy.deepcopy(self.rate_limit_config),
            }
        )
        return data


def _m(source: str, target: str, type_: str = "string", entity_key: bool = False) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {"source": source, "target": target, "type": type_}
    if entity_key:
        mapping["isEntityKey"] = True
    return mapping


TEMPLATES: List[ConnectorTemplate] = [
    ConnectorTemplate(
        id="alpha-vantage-stocks",
        name="Alpha Vantage - Stock Quotes",
        description="Real-time and historical stock market data",
        provider="Alpha Vantage",
        category="Financial",
        docs_url="https://www.alphavantage.co/documentation/",
        signup_url="https://www.alphavantage.co/support/#api-key",
        base_url="https://www.alphavantage.co",
        auth_type="API_KEY",
        auth_config={"apiKey": "", "headerName": "X-API-Key"},
        endpoint_config=[
            {
                "path": "/query?function=GLOBAL_QUOTE&symbol=AAPL&apikey={{apiKey}}",
                "method": "GET",
                "description": "Get real-time quote for a stock symbol",
            }
        ],
        field_mapping_config={
            "mappings": [
                _m("Global Quote.01. symbol", "symbol", entity_key=True),
                _m("Global Quote.05. price", "price", "number"),
                _m("Global Quote.02. open", "open", "number"),
                _m("Global Quote.03. high", "high", "number"),
                _m("Global Quote.04. low", "low", "number"),
                _m("Global Quote.06. volume", "volume", "number"),
                _m("Global Quote.07. latest trading day", "date", "date"),
            ]
        },
        rate_limit_config={"requestsPerMinute": 5, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="coingecko-crypto",
        name="CoinGecko - Crypto Prices",
        description="Cryptocurrency prices, market data, and metadata",
        provider="CoinGecko",
        category="Crypto",
        docs_url="https://www.coingecko.com/en/api/documentation",
        signup_url="https://www.coingecko.com/en/api",
        base_url="https://api.coingecko.com/api/v3",
        auth_type="NONE",
        endpoint_config=[
            {
                "path": "/coins/markets?vs_currency=usd&order=market_cap_desc&per_page=100&page=1",
                "method": "GET",
                "description": "Get top 100 cryptocurrencies by market cap",
            }
        ],
        field_mapping_config={
            "mappings": [
                _m("id", "coinId", entity_key=True),
                _m("symbol", "symbol"),
                _m("name", "name"),
                _m("current_price", "price", "number"),
                _m("market_cap", "marketCap", "number"),
                _m("total_volume", "volume24h", "number"),
                _m("price_change_percentage_24h", "change24h", "number"),
                _m("last_updated", "updatedAt", "date"),
            ]
        },
        rate_limit_config={"requestsPerMinute": 10, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="newsapi-headlines",
        name="NewsAPI - Top Headlines",
        description="Breaking news headlines from around the world",
        provider="NewsAPI",
        category="News",
        docs_url="https://newsapi.org/docs",
        signup_url="https://newsapi.org/register",
        base_url="https://newsapi.org/v2",
        auth_type="API_KEY",
        auth_config={"apiKey": "", "headerName": "X-Api-Key"},
        endpoint_config=[
            {
                "path": "/top-headlines?country=us&pageSize=20",
                "method": "GET",
                "description": "Get top US news headlines",
            }
        ],
        field_mapping_config={
            "mappings": [
                _m("articles.0.title", "title"),
                _m("articles.0.description", "description"),
                _m("articles.0.url", "url", entity_key=True),
                _m("articles.0.source.name", "source"),
                _m("articles.0.publishedAt", "publishedAt", "date"),
                _m("articles.0.author", "author"),
            ]
        },
        rate_limit_config={"requestsPerMinute": 100, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="exchangerate-currency",
        name="ExchangeRate - Currency Rates",
        description="Live foreign exchange rates",
        provider="ExchangeRate API",
        category="Financial",
        docs_url="https://www.exchangerate-api.com/docs/overview",
        signup_url="https://www.exchangerate-api.com/",
        base_url="https://api.exchangerate.host",
        auth_type="NONE",
        endpoint_config=[
            {
                "path": "/latest?base=USD",
                "method": "GET",
                "description": "Get latest exchange rates with USD base",
            }
        ],
        field_mapping_config={
            "mappings": [
                _m("base", "baseCurrency", entity_key=True),
                _m("date", "date", "date"),
            ]
            + [_m(f"rates.{code}", code, "number") for code in ("EUR", "GBP", "JPY", "CAD", "AUD", "INR")]
        },
        rate_limit_config={"requestsPerMinute": 100, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="finnhub-market",
        name="Finnhub - Market Data",
        description="Real-time RESTful APIs for stocks, forex, crypto",
        provider="Finnhub",
        category="Financial",
        docs_url="https://finnhub.io/docs/api",
        signup_url="https://finnhub.io/register",
        base_url="https://finnhub.io/api/v1",
        auth_type="API_KEY",
        auth_config={"apiKey": "", "headerName": "X-Finnhub-Token"},
        endpoint_config=[
            {"path": "/quote?symbol=AAPL", "method": "GET", "description": "Get real-time quote for a stock"}
        ],
        field_mapping_config={
            "mappings": [
                _m("c", "currentPrice", "number"),
                _m("d", "change", "number"),
                _m("dp", "changePercent", "number"),
                _m("h", "high", "number"),
                _m("l", "low", "number"),
                _m("o", "open", "number"),
                _m("pc", "previousClose", "number"),
                _m("t", "timestamp", "number"),
            ]
        },
        rate_limit_config={"requestsPerMinute": 60, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="openweather-current",
        name="OpenWeatherMap - Current Weather",
        description="Current weather data for any location",
        provider="OpenWeatherMap",
        category="Weather",
        docs_url="https://openweathermap.org/current",
        signup_url="https://openweathermap.org/api",
        base_url="https://api.openweathermap.org/data/2.5",
        auth_type="API_KEY",
        # OpenWeatherMap only reads the key from the query string.
        auth_config={"apiKey": "", "headerName": "appid"},
        endpoint_config=[
            {
                "path": "/weather?q=London&units=metric&appid={{apiKey}}",
                "method": "GET",
                "description": "Get current weather for a city",
            }
        ],
        field_mapping_config={
            "mappings": [
                _m("name", "city", entity_key=True),
                _m("main.temp", "temperature", "number"),
                _m("main.feels_like", "feelsLike", "number"),
                _m("main.humidity", "humidity", "number"),
                _m("weather.0.main", "condition"),
                _m("weather.0.description", "description"),
                _m("wind.speed", "windSpeed", "number"),
                _m("dt", "timestamp", "number"),
            ]
        },
        rate_limit_config={"requestsPerMinute": 60, "retryAttempts": 3},
    ),
    ConnectorTemplate(
        id="jsonplaceholder-posts",
        name="JSONPlaceholder - Posts",
        description="Fake REST API for testing connectors end to end",
        provider="JSONPlaceholder",
        category="Testing",
        docs_url="https://jsonplaceholder.typicode.com/guide/",
        base_url="https://jsonplaceholder.typicode.com",
        auth_type="NONE",
        endpoint_config=[{"path": "/posts", "method": "GET", "description": "List all posts"}],
        field_mapping_config={
            "mappings": [
                _m("id", "postId", "number", entity_key=True),
                _m("userId", "authorId", "number"),
                _m("title", "title"),
                _m("body", "body"),
            ]
        },
        rate_limit_config={"requestsPerSecond": 5, "retryAttempts": 3},
    ),
]

_BY_ID: Dict[str, ConnectorTemplate] = {t.id: t for t in TEMPLATES}


def list_templates() -> List[Dict[str, Any]]:
    return [t.summary() for t in TEMPLATES]


def get_template(template_id: str) -> Optional[ConnectorTemplate]:
    return _BY_ID.get(template_id)


def get_templates_by_category(category: str) -> List[ConnectorTemplate]:
    return [t for t in TEMPLATES if t.category == category]


def get_categories() -> List[str]:
    seen: List[str] = []
    for t in TEMPLATES:
        if t.category not in seen:
            seen.append(t.category)
    return seen


def build_connector_from_template(
    template: ConnectorTemplate,
    *,
    name: Optional[str] = None,
    auth_config: Optional[Dict[str, Any]] = None,
    is_shared: bool = False,
) -> ConnectorCreate:
    """Validated connector payload for ``template`` with caller overrides.

    Raises ``pydantic.ValidationError`` when the merged configuration is
    incomplete, e.g. an API_KEY template without an ``apiKey``.
    """
    merged_auth = {**template.auth_config, **(auth_config or {})}

    return ConnectorCreate(
        name=name or template.name,
        base_url=template.base_url,
        auth_type=template.auth_type,
        auth_config=merged_auth,
        rate_limit_config=copy.deepcopy(template.rate_limit_config),
        endpoint_config=copy.deepcopy(template.endpoint_config),
        field_mapping_config=copy.deepcopy(template.field_mapping_config),
        is_shared=is_shared,
    )
