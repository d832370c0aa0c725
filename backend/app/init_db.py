from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.models_sqlalchemy import Base, SessionLocal, engine
from app.models_sqlalchemy.models import User, UserRole
from app.utils.logger import logger


def ensure_admin(session_factory: sessionmaker = SessionLocal) -> User:
    """Return the first admin user, creating INITIAL_ADMIN_EMAIL if none exists."""
    db = session_factory()
    try:
        admin = db.query(User).filter(User.role == UserRole.admin.value).order_by(User.created_at.asc()).first()
        if admin is not None:
            return admin

        admin = User(email=settings.INITIAL_ADMIN_EMAIL, role=UserRole.admin.value)
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info(f"Created initial admin user {admin.email} (id={admin.id})")
        return admin
    finally:
        db.close()


def init_db():
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    ensure_admin()
    logger.info("Database tables created successfully!")


if __name__ == "__main__":
    init_db()
