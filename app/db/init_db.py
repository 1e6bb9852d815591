from sqlalchemy.orm import Session
import structlog
from app.models.user import User, UserRole
from app.core.config import settings
from app.core.security import hash_password

logger = structlog.get_logger()


def init_db(db: Session) -> None:
    """Initialize database with default data"""

    # Create admin user
    admin = db.query(User).filter(User.email == settings.DEFAULT_ADMIN_EMAIL).first()
    if not admin:
        seed_password = (settings.DEFAULT_ADMIN_PASSWORD or "").strip()
        if not seed_password:
            message = (
                "Missing admin bootstrap credentials: set DEFAULT_ADMIN_PASSWORD "
                "or create an admin user manually before launch."
            )
            if settings.ENVIRONMENT == "production":
                logger.error("admin_bootstrap_missing", detail=message, env=settings.ENVIRONMENT)
                raise RuntimeError(message)
            logger.warning("admin_bootstrap_missing", detail=message, env=settings.ENVIRONMENT)
        else:
            admin = User(
                email=settings.DEFAULT_ADMIN_EMAIL,
                username="admin",
                password_hash=hash_password(seed_password),
                full_name="Storefront Admin",
                role=UserRole.ADMIN,
                is_active=True,
            )
            db.add(admin)
            logger.info("admin_user_created", email=settings.DEFAULT_ADMIN_EMAIL)

    db.commit()
    logger.info("database_initialized")


if __name__ == "__main__":
    from app.db.session import Database
    database = Database(settings.DATABASE_URL).connect()
    db = database.session()
    try:
        init_db(db)
    finally:
        db.close()
        database.dispose()
