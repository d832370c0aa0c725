"""Connector sync services.

A sync job is one pass over every endpoint of a connector: pace the
request, fetch with 429 backoff, store the raw body, map it into normalized
records. Jobs run as asyncio tasks inside the API process and are triggered
either through ``app.routers.connectors`` or by the ``SyncScheduler``.
"""

from .engine import SyncEngine, build_auth_headers
from .scheduler import SyncScheduler
