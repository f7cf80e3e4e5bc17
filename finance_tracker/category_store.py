from __future__ import annotations

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from finance_tracker.db import categories, transactions, unit_of_work
from finance_tracker.errors import ConflictError, NotFoundError
from finance_tracker.schemas import CategoryPatch, CategoryPayload, CategoryResponse, CategoryType

CATEGORY_COLUMNS = (
    categories.c.id,
    categories.c.user_id,
    categories.c.name,
    categories.c.description,
    categories.c.type,
    categories.c.created_at,
)


def _to_response(row) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        type=row["type"],
        created_at=row["created_at"],
    )


def _fetch_owned_category(conn: Connection, user_id: int, category_id: int):
    return conn.execute(
        select(*CATEGORY_COLUMNS).where(categories.c.id == category_id, categories.c.user_id == user_id)
    ).mappings().first()


def _name_taken(
    conn: Connection, user_id: int, name: str, category_type: str, exclude_id: int | None = None
) -> bool:
    conditions = [
        categories.c.user_id == user_id,
        categories.c.name == name,
        categories.c.type == category_type,
    ]
    if exclude_id is not None:
        conditions.append(categories.c.id != exclude_id)
    return conn.execute(select(categories.c.id).where(*conditions).limit(1)).first() is not None


def category_in_use(conn: Connection, user_id: int, name: str) -> bool:
    # transactions reference categories by name, not by id
    txn_match = conn.execute(
        select(transactions.c.id)
        .where(transactions.c.user_id == user_id, transactions.c.category == name)
        .limit(1)
    ).first()
    return txn_match is not None


def list_categories(engine: Engine, user_id: int, category_type: str | None = None) -> list[CategoryResponse]:
    conditions = [categories.c.user_id == user_id]
    if category_type and category_type.strip().lower() in CategoryType.values:
        conditions.append(categories.c.type == category_type.strip().lower())
    with engine.begin() as conn:
        rows = conn.execute(
            select(*CATEGORY_COLUMNS)
            .where(*conditions)
            .order_by(categories.c.created_at.desc(), categories.c.id.desc())
        ).mappings().all()
    return [_to_response(row) for row in rows]


def get_category(engine: Engine, user_id: int, category_id: int) -> CategoryResponse:
    with engine.begin() as conn:
        row = _fetch_owned_category(conn, user_id, category_id)
    if not row:
        raise NotFoundError("Category not found.")
    return _to_response(row)


def create_category(engine: Engine, user_id: int, payload: CategoryPayload) -> CategoryResponse:
    payload = CategoryPayload.validate_payload(payload)
    with unit_of_work(engine) as conn:
        if _name_taken(conn, user_id, payload.name, payload.type):
            raise ConflictError("Category name already exists for this type.")
        try:
            row = conn.execute(
                insert(categories)
                .values(
                    user_id=user_id,
                    name=payload.name,
                    description=payload.description,
                    type=payload.type,
                )
                .returning(*CATEGORY_COLUMNS)
            ).mappings().first()
        except IntegrityError as exc:
            raise ConflictError("Category name already exists for this type.") from exc
    return _to_response(row)


def update_category(
    engine: Engine, user_id: int, category_id: int, payload: CategoryPatch
) -> CategoryResponse:
    """Rename or re-describe a category.

    Renaming does not touch transactions that carry the old name.
    """
    payload = CategoryPatch.validate_payload(payload)
    with unit_of_work(engine) as conn:
        existing = _fetch_owned_category(conn, user_id, category_id)
        if not existing:
            raise NotFoundError("Category not found.")

        values = {}
        if "name" in payload.model_fields_set:
            if _name_taken(conn, user_id, payload.name, existing["type"], exclude_id=category_id):
                raise ConflictError("Category name already exists for this type.")
            values["name"] = payload.name
        if "description" in payload.model_fields_set:
            values["description"] = payload.description

        try:
            row = conn.execute(
                update(categories)
                .where(categories.c.id == category_id, categories.c.user_id == user_id)
                .values(**values)
                .returning(*CATEGORY_COLUMNS)
            ).mappings().first()
        except IntegrityError as exc:
            raise ConflictError("Category name already exists for this type.") from exc
    return _to_response(row)


def delete_category(engine: Engine, user_id: int, category_id: int) -> None:
    with unit_of_work(engine) as conn:
        existing = _fetch_owned_category(conn, user_id, category_id)
        if not existing:
            raise NotFoundError("Category not found.")
        if category_in_use(conn, user_id, existing["name"]):
            raise ConflictError("Cannot delete category that is being used in transactions.")
        conn.execute(
            categories.delete().where(categories.c.id == category_id, categories.c.user_id == user_id)
        )
