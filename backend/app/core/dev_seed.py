import os

import structlog
from sqlalchemy.orm import Session

from backend.app.core.security import get_password_hash
from backend.app.models.user import User

logger = structlog.get_logger(__name__)

DEFAULT_DEV_ADMIN_EMAIL = "admin@911dc.local"
DEFAULT_DEV_PASSWORD = "Secret123!"


def ensure_default_dev_admin(db: Session) -> None:
    """
    Create a local admin account for development if none exists.
    Skipped under pytest and outside the development environment.
    """
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    if os.getenv("ENVIRONMENT", "development") != "development":
        return

    existing = db.query(User).filter(User.email == DEFAULT_DEV_ADMIN_EMAIL).first()
    if existing:
        return

    user = User(
        email=DEFAULT_DEV_ADMIN_EMAIL,
        full_name="Local Admin",
        hashed_password=get_password_hash(DEFAULT_DEV_PASSWORD),
        is_active=True,
        is_admin=True,
    )
    db.add(user)
    db.commit()
    logger.info("Development admin created", email=DEFAULT_DEV_ADMIN_EMAIL)
