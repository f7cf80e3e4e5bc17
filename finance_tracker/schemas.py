import datetime as dt
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel

from finance_tracker.currency_conversion import normalize_currency, quantize_money
from finance_tracker.errors import ValidationError


class TransactionType:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower() if isinstance(value, str) else ""
        if normalized not in cls.values:
            raise ValidationError('Invalid transaction type. Must be "income" or "expense".')
        return normalized


class CategoryType:
    values = {"expense", "income"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower() if isinstance(value, str) else ""
        if normalized not in cls.values:
            raise ValidationError('Type must be either "expense" or "income".')
        return normalized


class AccountType:
    values = ("Cash", "Bank Account", "Crypto Wallet")

    @classmethod
    def validate(cls, value: str) -> str:
        lookup = {item.lower(): item for item in cls.values}
        normalized = " ".join(value.split()).lower() if isinstance(value, str) else ""
        if normalized not in lookup:
            raise ValidationError(
                'Account type must be either "Cash", "Bank Account", or "Crypto Wallet".'
            )
        return lookup[normalized]


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _positive_amount(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number.")
    amount = quantize_money(value)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.")
    return amount


class RegisterPayload(BaseModel):
    username: str
    name: str
    password: str

    @classmethod
    def validate_payload(cls, payload: "RegisterPayload") -> "RegisterPayload":
        payload.username = payload.username.strip()
        payload.name = payload.name.strip()
        if not payload.username or not payload.name or not payload.password:
            raise ValidationError("Username, name, and password are required.")
        return payload


class LoginPayload(BaseModel):
    username: str
    password: str


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    currency: str
    created_at: dt.datetime | None = None


class CurrencyPayload(BaseModel):
    currency: str


class CurrencyResponse(BaseModel):
    currency: str


class ExchangeRatesResponse(BaseModel):
    base: str
    rates: dict[str, Decimal]
    last_updated: dt.datetime | None = None
    source: str
    state: str


class AccountPayload(BaseModel):
    name: str
    type: str = "Cash"
    currency: str | None = None
    balance: Decimal = Decimal("0")

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValidationError("Account name required.")
        payload.type = AccountType.validate(payload.type)
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        payload.balance = quantize_money(payload.balance)
        return payload


class AccountPatch(BaseModel):
    name: str | None = None
    type: str | None = None
    currency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountPatch") -> "AccountPatch":
        if "name" in payload.model_fields_set:
            payload.name = _clean_text(payload.name)
            if payload.name is None:
                raise ValidationError("Account name required.")
        if "type" in payload.model_fields_set:
            if payload.type is None:
                raise ValidationError("Account type cannot be empty.")
            payload.type = AccountType.validate(payload.type)
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        return payload


class AccountResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: str
    currency: str
    balance: Decimal
    created_at: dt.datetime | None = None


class CategoryPayload(BaseModel):
    name: str
    type: str
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValidationError("Name and type are required.")
        payload.type = CategoryType.validate(payload.type)
        payload.description = _clean_text(payload.description)
        return payload


class CategoryPatch(BaseModel):
    name: str | None = None
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPatch") -> "CategoryPatch":
        if not payload.model_fields_set:
            raise ValidationError("No valid fields to update.")
        if "name" in payload.model_fields_set:
            payload.name = _clean_text(payload.name)
            if payload.name is None:
                raise ValidationError("Category name required.")
        if "description" in payload.model_fields_set:
            payload.description = _clean_text(payload.description)
        return payload


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    name: str
    description: str | None = None
    type: str
    created_at: dt.datetime | None = None


class TransactionPayload(BaseModel):
    account_id: int
    amount: Decimal
    type: str
    currency: str | None = None
    category: str | None = None
    description: str | None = None
    date: dt.date | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.amount = _positive_amount(payload.amount)
        payload.type = TransactionType.validate(payload.type)
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        payload.category = _clean_text(payload.category)
        payload.description = _clean_text(payload.description)
        return payload


class TransactionPatch(BaseModel):
    """Partial update of a transaction; only explicitly supplied fields apply."""

    account_id: int | None = None
    amount: Decimal | None = None
    type: str | None = None
    currency: str | None = None
    category: str | None = None
    description: str | None = None
    date: dt.date | None = None

    # Columns that may not be cleared to null.
    required_fields: ClassVar[tuple[str, ...]] = ("account_id", "amount", "type", "currency", "date")
    field_order: ClassVar[tuple[str, ...]] = (
        "account_id",
        "amount",
        "description",
        "category",
        "type",
        "currency",
        "date",
    )

    @classmethod
    def validate_payload(cls, payload: "TransactionPatch") -> "TransactionPatch":
        supplied = payload.model_fields_set
        if not supplied:
            raise ValidationError("No fields to update.")
        for name in cls.required_fields:
            if name in supplied and getattr(payload, name) is None:
                raise ValidationError(f"Field '{name}' cannot be null.")
        if payload.amount is not None:
            payload.amount = _positive_amount(payload.amount)
        if payload.type is not None:
            payload.type = TransactionType.validate(payload.type)
        if payload.currency is not None:
            payload.currency = normalize_currency(payload.currency)
        if "category" in supplied:
            payload.category = _clean_text(payload.category)
        if "description" in supplied:
            payload.description = _clean_text(payload.description)
        return payload

    def changes(self) -> list[tuple[str, object]]:
        return [
            (name, getattr(self, name))
            for name in self.field_order
            if name in self.model_fields_set
        ]


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    account_id: int
    amount: Decimal
    description: str | None = None
    category: str | None = None
    type: str
    currency: str
    date: dt.date
    created_at: dt.datetime | None = None
    account_name: str | None = None
    account_type: str | None = None


class ArchivedTransactionResponse(BaseModel):
    id: int
    original_id: int
    user_id: int
    account_id: int
    amount: Decimal
    description: str | None = None
    category: str | None = None
    type: str
    currency: str
    date: dt.date
    archived_at: dt.datetime | None = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class TransactionPage(BaseModel):
    transactions: list[TransactionResponse]
    pagination: Pagination


class TypeCurrencyTotal(BaseModel):
    type: str
    currency: str
    total: Decimal
    count: int


class CurrencyBalance(BaseModel):
    currency: str
    total_balance: Decimal


class ConvertedSummary(BaseModel):
    currency: str
    total_income: Decimal
    total_expenses: Decimal
    net_flow: Decimal
    total_balance: Decimal
    formatted: dict[str, str]


class StatsResponse(BaseModel):
    period: str
    start_date: dt.date | None = None
    transactions: list[TypeCurrencyTotal]
    account_balances: list[CurrencyBalance]
    summary: ConvertedSummary | None = None
