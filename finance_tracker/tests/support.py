from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import insert, select

from finance_tracker.db import accounts, build_engine, init_db, users


def make_engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    return engine


def add_user(engine, username: str = "ana", currency: str = "RSD") -> int:
    with engine.begin() as conn:
        return conn.execute(
            insert(users)
            .values(username=username, name=username.title(), hashed_password="x", currency=currency)
            .returning(users.c.id)
        ).scalar_one()


def add_account(
    engine,
    user_id: int,
    name: str = "Wallet",
    currency: str = "RSD",
    balance: Decimal = Decimal("0"),
    account_type: str = "Cash",
) -> int:
    with engine.begin() as conn:
        return conn.execute(
            insert(accounts)
            .values(user_id=user_id, name=name, type=account_type, currency=currency, balance=balance)
            .returning(accounts.c.id)
        ).scalar_one()


def balance_of(engine, account_id: int) -> Decimal:
    with engine.begin() as conn:
        value = conn.execute(
            select(accounts.c.balance).where(accounts.c.id == account_id)
        ).scalar_one()
    return Decimal(str(value))


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRateProvider:
    """Replays scripted results; the last one repeats once the script runs out."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    def fetch_rates(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


FIXED_WALL_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
