import logging
from datetime import date

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from finance_tracker import account_store, category_store, stats_reporter, transaction_engine, user_store
from finance_tracker.config import Settings
from finance_tracker.currency_conversion import BASE_CURRENCY
from finance_tracker.db import build_engine, init_db
from finance_tracker.errors import AuthenticationError, FinanceTrackerError, StoreError
from finance_tracker.exchange_rates import ExchangeRateApiProvider, ExchangeRateCache
from finance_tracker.schemas import (
    AccountPatch,
    AccountPayload,
    AccountResponse,
    ArchivedTransactionResponse,
    CategoryPatch,
    CategoryPayload,
    CategoryResponse,
    CurrencyPayload,
    CurrencyResponse,
    ExchangeRatesResponse,
    LoginPayload,
    RegisterPayload,
    StatsResponse,
    TransactionPage,
    TransactionPatch,
    TransactionPayload,
    TransactionResponse,
    UserResponse,
)
from finance_tracker.transaction_engine import TransactionFilters

logger = logging.getLogger(__name__)

router = APIRouter()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_rate_cache(request: Request) -> ExchangeRateCache:
    return request.app.state.rate_cache


def get_current_user(
    engine: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserResponse:
    if not x_user_id:
        raise AuthenticationError("Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise AuthenticationError("Invalid user identity.") from exc
    return user_store.get_identity(engine, user_id)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(payload: RegisterPayload, engine: Engine = Depends(get_engine)) -> UserResponse:
    return user_store.register_user(engine, payload)


@router.post("/auth/login", response_model=UserResponse)
def login(payload: LoginPayload, engine: Engine = Depends(get_engine)) -> UserResponse:
    return user_store.authenticate_user(engine, payload)


@router.get("/user/me", response_model=UserResponse)
def get_profile(user: UserResponse = Depends(get_current_user)) -> UserResponse:
    return user


@router.get("/user/currency", response_model=CurrencyResponse)
def get_currency(
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CurrencyResponse:
    return CurrencyResponse(currency=user_store.get_preferred_currency(engine, user.id))


@router.put("/user/currency", response_model=CurrencyResponse)
def update_currency(
    payload: CurrencyPayload,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CurrencyResponse:
    return CurrencyResponse(currency=user_store.set_preferred_currency(engine, user.id, payload.currency))


@router.get("/user/exchange-rates", response_model=ExchangeRatesResponse)
def get_exchange_rates(
    user: UserResponse = Depends(get_current_user),
    rate_cache: ExchangeRateCache = Depends(get_rate_cache),
) -> ExchangeRatesResponse:
    snapshot = rate_cache.get_rates()
    return ExchangeRatesResponse(
        base=BASE_CURRENCY,
        rates=dict(snapshot.rates),
        last_updated=snapshot.fetched_at,
        source=snapshot.source,
        state=rate_cache.state,
    )


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> list[AccountResponse]:
    return account_store.list_accounts(engine, user.id)


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(
    payload: AccountPayload,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    return account_store.create_account(engine, user.id, payload)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    return account_store.get_account(engine, user.id, account_id)


@router.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    payload: AccountPatch,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> AccountResponse:
    return account_store.update_account(engine, user.id, account_id, payload)


@router.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> dict:
    account_store.delete_account(engine, user.id, account_id)
    return {"status": "deleted"}


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    category_type: str | None = Query(None, alias="type"),
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> list[CategoryResponse]:
    return category_store.list_categories(engine, user.id, category_type)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryPayload,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    return category_store.create_category(engine, user.id, payload)


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    return category_store.get_category(engine, user.id, category_id)


@router.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryPatch,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CategoryResponse:
    return category_store.update_category(engine, user.id, category_id, payload)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> dict:
    category_store.delete_category(engine, user.id, category_id)
    return {"status": "deleted"}


@router.get("/transactions", response_model=TransactionPage)
def list_transactions(
    txn_type: str | None = Query(None, alias="type"),
    account_id: int | None = None,
    category: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = transaction_engine.DEFAULT_PAGE_SIZE,
    offset: int = 0,
    sort: str = transaction_engine.DEFAULT_SORT,
    order: str = transaction_engine.DEFAULT_ORDER,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionPage:
    filters = TransactionFilters(
        type=txn_type,
        account_id=account_id,
        category=category,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
        sort=sort,
        order=order,
    )
    return transaction_engine.list_transactions(engine, user.id, filters)


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(
    payload: TransactionPayload,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return transaction_engine.create_transaction(engine, user.id, payload)


@router.get("/transactions/archived", response_model=list[ArchivedTransactionResponse])
def list_archived_transactions(
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> list[ArchivedTransactionResponse]:
    return transaction_engine.list_archived_transactions(engine, user.id)


@router.get("/transactions/stats/summary", response_model=StatsResponse)
def transaction_stats(
    period: str = "month",
    currency: str | None = None,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
    rate_cache: ExchangeRateCache = Depends(get_rate_cache),
) -> StatsResponse:
    stats = stats_reporter.transaction_stats(engine, user.id, period)
    snapshot = rate_cache.get_rates()
    stats.summary = stats_reporter.summarize(stats, currency or user.currency, snapshot.rates)
    return stats


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return transaction_engine.get_transaction(engine, user.id, transaction_id)


@router.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    patch: TransactionPatch,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionResponse:
    return transaction_engine.update_transaction(engine, user.id, transaction_id, patch)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: UserResponse = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> dict:
    transaction_engine.delete_transaction(engine, user.id, transaction_id)
    return {"status": "deleted"}


def handle_domain_error(request: Request, exc: FinanceTrackerError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.error("%s %s failed with a store error", request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "detail": exc.message},
    )


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    rate_cache: ExchangeRateCache | None = None,
) -> FastAPI:
    """Build the application and wire its shared collaborators."""
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Finance Tracker API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = engine or build_engine(settings.database_url)
    app.state.rate_cache = rate_cache or ExchangeRateCache(
        provider=ExchangeRateApiProvider(
            url=settings.fx_api_url,
            timeout_seconds=settings.fx_timeout_seconds,
        ),
        ttl_seconds=settings.fx_cache_ttl_seconds,
    )

    @app.on_event("startup")
    def startup() -> None:
        init_db(app.state.engine)

    app.add_exception_handler(FinanceTrackerError, handle_domain_error)
    app.include_router(router)
    return app


app = create_app()
