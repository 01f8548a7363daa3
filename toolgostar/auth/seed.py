"""Create or refresh the initial administrator: ``python -m toolgostar.auth.seed``."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from toolgostar.auth.models import User
from toolgostar.auth.schemas import UserCreate
from toolgostar.auth.service import find_user_by_email, get_user, hash_new_password, user_admin_service
from toolgostar.core.config import Settings, get_settings
from toolgostar.core.database import SessionLocal
from toolgostar.logging import configure_logging
from toolgostar.platform.security.permissions import Role


logger = logging.getLogger("toolgostar.seed")


def seed_admin(session: Session, settings: Settings) -> User:
    if not settings.admin_email or not settings.admin_password:
        raise RuntimeError("ADMIN_EMAIL and ADMIN_PASSWORD must be set to seed the administrator")

    existing = find_user_by_email(session, settings.admin_email)
    if existing is not None:
        existing.role = Role.ADMIN.value
        existing.is_active = True
        existing.password_hash = hash_new_password(settings.admin_password, "admin_password")
        session.commit()
        logger.info("seed.admin_updated", extra={"entity_id": str(existing.id)})
        return existing

    created = user_admin_service.create_user(
        session,
        None,
        UserCreate(
            email=settings.admin_email,
            password=settings.admin_password,
            first_name=settings.admin_first_name,
            last_name=settings.admin_last_name,
            role=Role.ADMIN,
        ),
    )
    logger.info("seed.admin_created", extra={"entity_id": str(created.id)})
    return get_user(session, created.id)


def main() -> None:
    configure_logging()
    settings = get_settings()
    with SessionLocal() as session:
        seed_admin(session, settings)
        logger.info("seed.finished", extra={"status": f"admins={user_admin_service.count_admins(session)}"})


if __name__ == "__main__":
    main()
