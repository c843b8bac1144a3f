"""
First-start data: a default admin account so the accounting UI can be reached.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.core.auth import hash_password
from app.models.user import User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def seed_admin_user_if_missing(session: "Session") -> int:
    """
    Ensure the default admin user exists for first login.
    """
    existing = (
        session.execute(select(User).where(func.lower(User.username) == "admin"))
        .scalars()
        .first()
    )
    if existing:
        return 0
    password_hash, password_salt = hash_password("admin")
    session.add(
        User(
            username="admin",
            display_name="Administrator",
            password_hash=password_hash,
            password_salt=password_salt,
            role="admin",
            is_active=True,
        )
    )
    session.commit()
    logger.info("seeded_admin_user username=admin")
    return 1
