from __future__ import annotations
from typing import Iterable, List
from sqlalchemy import select
from fieldops import get_db
from fieldops.errors import NotFound, StateError, ValidationError
from fieldops.models.user import User


def get_user(user_id: int, session=None) -> User:
    session = session or get_db()
    user = session.get(User, user_id, populate_existing=True)
    if user is None or not user.is_active:
        raise NotFound(f'User {user_id} not found')
    return user


def require_technician(user_id: int, session=None) -> User:
    user = get_user(user_id, session)
    if not user.is_technician:
        raise StateError(f'User {user_id} is not a technician')
    return user


def require_admin(user_id: int, session=None) -> User:
    user = get_user(user_id, session)
    if not user.is_admin:
        raise StateError(f'User {user_id} is not an administrator')
    return user


def require_requester(user_id: int, session=None) -> User:
    user = get_user(user_id, session)
    if user.role != User.ROLE_REQUESTER:
        raise ValidationError(f'User {user_id} cannot raise tickets')
    return user


def active_user_ids(roles: Iterable[str], session=None) -> List[int]:
    session = session or get_db()
    return list(session.execute(
        select(User.id).where(User.role.in_(list(roles)), User.is_active.is_(True)).order_by(User.id.asc())
    ).scalars())
