import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from circulate.core.models import Role, User
from circulate.core.exceptions import (
    DatabaseInsertError,
    InvalidRequestError,
    UserExistsError,
    UserNotFoundError,
)
from circulate.core.utils import require_id

logger = logging.getLogger(__name__)


def get_user(session: Session, user_id) -> User:
    user_id = require_id(user_id, "user id")
    user = session.get(User, user_id)
    if not user:
        raise UserNotFoundError(f"User {user_id} not found.")
    return user


def lock_user(session: Session, user_id) -> Optional[User]:
    """Loads a user with its row locked until the transaction ends.

    The per-process patron lock only covers one worker; the row lock covers
    the others. SQLite has no FOR UPDATE and relies on the patron lock alone.
    """
    stmt = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.execute(stmt).scalar_one_or_none()


def add_user(session: Session, name: str, email: str, role=Role.STUDENT,
             phone: Optional[str] = None) -> User:
    if not name or not email:
        raise InvalidRequestError("Name and email are required.")
    try:
        role = Role(role)
    except ValueError:
        raise InvalidRequestError(f"Unknown role '{role}'.")
    email = email.strip().lower()
    if session.query(User).filter(User.email == email).first():
        raise UserExistsError(f"A user with email {email} already exists.")
    try:
        user = User(name=name, email=email, role=role, phone=phone, active=True)
        session.add(user)
        session.commit()
        logger.info(f"Added {role.value} {user.id} ({email})")
        return user
    except Exception as e:
        session.rollback()
        raise DatabaseInsertError(f"Failed to add user: {str(e)}.")


def reactivate_user(session: Session, user_id) -> User:
    """Lifts a fine block. Paying fines never does this on its own."""
    user = get_user(session, user_id)
    if not user.active:
        user.active = True
        session.commit()
        logger.info(f"User {user.id} reactivated")
    return user


def update_user(session: Session, user_id, name: Optional[str] = None, email: Optional[str] = None,
                phone: Optional[str] = None, role=None) -> User:
    """Edits a user's details. Blocking and reactivation have their own operations."""
    user = get_user(session, user_id)
    if name is not None and not name.strip():
        raise InvalidRequestError("Name cannot be empty.")
    if role is not None:
        try:
            role = Role(role)
        except ValueError:
            raise InvalidRequestError(f"Unknown role '{role}'.")
    if email is not None:
        email = email.strip().lower()
        taken = session.query(User).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise UserExistsError(f"A user with email {email} already exists.")

    for field, value in (('name', name), ('email', email), ('phone', phone), ('role', role)):
        if value is not None:
            setattr(user, field, value)
    session.commit()
    logger.info(f"User {user.id} updated")
    return user
