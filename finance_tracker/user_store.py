from __future__ import annotations

import logging

import bcrypt
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from finance_tracker.currency_conversion import BASE_CURRENCY, normalize_currency
from finance_tracker.db import accounts, unit_of_work, users
from finance_tracker.errors import AuthenticationError, ConflictError, NotFoundError
from finance_tracker.schemas import LoginPayload, RegisterPayload, UserResponse

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_NAME = "Main Account"
DEFAULT_ACCOUNT_TYPE = "Cash"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def _to_response(row) -> UserResponse:
    return UserResponse(
        id=row["id"],
        username=row["username"],
        name=row["name"],
        currency=row["currency"],
        created_at=row["created_at"],
    )


def register_user(engine: Engine, payload: RegisterPayload) -> UserResponse:
    """Create a user together with its default cash account."""
    payload = RegisterPayload.validate_payload(payload)
    hashed_password = hash_password(payload.password)

    with unit_of_work(engine) as conn:
        existing = conn.execute(
            select(users.c.id).where(users.c.username == payload.username)
        ).first()
        if existing:
            raise ConflictError("User with this username already exists.")
        try:
            row = conn.execute(
                insert(users)
                .values(
                    username=payload.username,
                    name=payload.name,
                    hashed_password=hashed_password,
                    currency=BASE_CURRENCY,
                )
                .returning(users.c.id, users.c.username, users.c.name, users.c.currency, users.c.created_at)
            ).mappings().first()
        except IntegrityError as exc:
            raise ConflictError("User with this username already exists.") from exc
        conn.execute(
            insert(accounts).values(
                user_id=row["id"],
                name=DEFAULT_ACCOUNT_NAME,
                type=DEFAULT_ACCOUNT_TYPE,
                currency=row["currency"],
                balance=0,
            )
        )

    logger.info("Registered user %s", row["id"])
    return _to_response(row)


def authenticate_user(engine: Engine, payload: LoginPayload) -> UserResponse:
    username = payload.username.strip()
    if not username or not payload.password:
        raise AuthenticationError("Username and password are required.")
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.username == username)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise AuthenticationError("Invalid credentials.")
    return _to_response(row)


def get_identity(engine: Engine, user_id: int) -> UserResponse:
    """Resolve a verified user id into the identity used for ownership scoping."""
    with engine.begin() as conn:
        row = _fetch_user(conn, user_id)
    if not row:
        raise AuthenticationError("Unknown user identity.")
    return _to_response(row)


def get_preferred_currency(engine: Engine, user_id: int) -> str:
    with engine.begin() as conn:
        currency = conn.execute(
            select(users.c.currency).where(users.c.id == user_id)
        ).scalar_one_or_none()
    if currency is None:
        raise NotFoundError("User not found.")
    return currency


def set_preferred_currency(engine: Engine, user_id: int, currency: str) -> str:
    normalized = normalize_currency(currency)
    with unit_of_work(engine) as conn:
        result = conn.execute(
            update(users).where(users.c.id == user_id).values(currency=normalized)
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found.")
    return normalized


def _fetch_user(conn: Connection, user_id: int):
    return conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
