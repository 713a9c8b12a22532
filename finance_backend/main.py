import logging
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from finance_backend import goals as goal_service
from finance_backend import holdings as holding_service
from finance_backend import planned_events as planned_event_service
from finance_backend import reports
from finance_backend.config import ENABLE_SCHEDULER, FRONTEND_ORIGIN, LOG_LEVEL, RATE_BASE_CURRENCIES
from finance_backend.db import create_db_engine, init_db
from finance_backend.domain import Category, Periodicity, TransactionType, normalize_currency
from finance_backend.errors import FinanceError, http_status_for
from finance_backend.jobs import shutdown_scheduler, start_scheduler
from finance_backend.prices import HttpPriceSource
from finance_backend.rate_providers import FxRatesApiProvider
from finance_backend.rate_store import (
    ensure_currency_rates_exist,
    get_historical_exchange_rate,
    update_currency_rates,
)
from finance_backend.schema import bank_accounts, budgets, transactions, users

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_db_engine()
RATE_PROVIDER = FxRatesApiProvider()
PRICE_SOURCE = HttpPriceSource()


@app.on_event("startup")
def on_startup() -> None:
    init_db(engine)
    # Reports cannot run without rates; a failure here stops the app.
    ensure_currency_rates_exist(engine, RATE_PROVIDER)
    app.state.scheduler = None
    if ENABLE_SCHEDULER:
        app.state.scheduler = start_scheduler(engine, RATE_PROVIDER, PRICE_SOURCE)


@app.on_event("shutdown")
def on_shutdown() -> None:
    shutdown_scheduler(getattr(app.state, "scheduler", None))


@app.exception_handler(FinanceError)
async def handle_finance_error(request: Request, exc: FinanceError) -> JSONResponse:
    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_payload())


class CredentialsPayload(BaseModel):
    email: str
    password: str
    name: str | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    base_currency: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    base_currency: str | None = None
    monthly_income: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "UserSettingsPayload") -> "UserSettingsPayload":
        if payload.base_currency is not None:
            payload.base_currency = normalize_currency(payload.base_currency)
        if payload.monthly_income is not None and payload.monthly_income < 0:
            raise ValueError("Monthly income cannot be negative.")
        return payload


class UserSettingsResponse(BaseModel):
    id: int
    email: str
    base_currency: str
    monthly_income: Decimal | None = None


class BankAccountPayload(BaseModel):
    name: str
    type: str
    currency: str | None = None
    balance: Decimal = Decimal("0")

    @classmethod
    def validate_payload(cls, payload: "BankAccountPayload") -> "BankAccountPayload":
        payload.name = payload.name.strip()
        payload.type = payload.type.strip().upper()
        if not payload.name:
            raise ValueError("Account name required.")
        if not payload.type:
            raise ValueError("Account type required.")
        if payload.currency:
            payload.currency = normalize_currency(payload.currency)
        return payload


class BankAccountResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: str
    balance: Decimal
    currency: str


class TransactionPayload(BaseModel):
    amount: Decimal
    currency: str | None = None
    type: str = TransactionType.EXPENSE
    category: str = Category.OTHER
    date: date
    description: str | None = None
    bank_account_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        payload.category = Category.validate(payload.category)
        payload.currency = normalize_currency(payload.currency) if payload.currency else None
        payload.description = payload.description.strip() if payload.description else None
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    bank_account_id: int | None = None
    amount: Decimal
    currency: str
    type: str
    category: str
    date: date
    description: str | None = None


class BudgetPayload(BaseModel):
    category: str
    amount: Decimal
    period: str = Periodicity.MONTHLY

    @classmethod
    def validate_payload(cls, payload: "BudgetPayload") -> "BudgetPayload":
        payload.category = Category.validate(payload.category)
        payload.period = Periodicity.validate(payload.period)
        if payload.period == Periodicity.ONE_TIME:
            raise ValueError("Budgets need a recurring period.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class BudgetResponse(BaseModel):
    id: int
    user_id: int
    category: str
    amount: Decimal
    period: str


class GoalPayload(BaseModel):
    name: str
    target_amount: Decimal
    target_date: date
    description: str | None = None
    saved_amount: Decimal = Decimal("0")
    currency: str | None = None


class GoalUpdatePayload(BaseModel):
    name: str | None = None
    description: str | None = None
    target_amount: Decimal | None = None
    saved_amount: Decimal | None = None
    target_date: date | None = None
    completed: bool | None = None


class GoalResponse(BaseModel):
    id: int
    user_id: int
    name: str
    description: str | None = None
    target_amount: Decimal
    saved_amount: Decimal
    currency: str
    target_date: date
    completed: bool
    progress: float


class ContributionPayload(BaseModel):
    amount: Decimal


class PlannedEventPayload(BaseModel):
    name: str
    target_date: date
    estimated_cost: Decimal
    saved_so_far: Decimal = Decimal("0")
    currency: str | None = None
    category: str | None = None
    recurrence: str | None = None


class PlannedEventUpdatePayload(BaseModel):
    name: str | None = None
    target_date: date | None = None
    estimated_cost: Decimal | None = None
    saved_so_far: Decimal | None = None
    currency: str | None = None
    category: str | None = None
    recurrence: str | None = None


class PlannedEventResponse(BaseModel):
    id: int
    user_id: int
    name: str
    target_date: date
    estimated_cost: Decimal
    saved_so_far: Decimal
    currency: str
    category: str
    recurrence: str
    completed: bool
    completed_tx_id: int | None = None


class CompletionResponse(BaseModel):
    event_id: int
    transaction_id: int | None = None


class HoldingPayload(BaseModel):
    platform: str
    ticker: str
    name: str
    asset_type: str
    quantity: Decimal
    avg_cost: Decimal
    holding_currency: str


class HoldingResponse(BaseModel):
    id: int
    user_id: int
    platform: str
    ticker: str
    name: str
    asset_type: str
    quantity: Decimal
    avg_cost: Decimal
    holding_currency: str
    last_price: Decimal
    converted_value: Decimal
    note: str | None = None


class RateRefreshResponse(BaseModel):
    base: str
    rate_count: int
    rate_date: date
    used_fallback: bool
    source_date: date


class HistoricalRateResponse(BaseModel):
    from_currency: str
    to_currency: str
    date: date
    rate: Decimal


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_currency(value: str | None, conn, user_id: int) -> str:
    if value:
        return normalize_currency(value)
    return conn.execute(select(users.c.base_currency).where(users.c.id == user_id)).scalar_one()


def ensure_bank_account(conn, user_id: int, bank_account_id: int | None) -> None:
    if bank_account_id is None:
        return
    exists = conn.execute(
        select(bank_accounts.c.id).where(
            bank_accounts.c.id == bank_account_id, bank_accounts.c.user_id == user_id
        )
    ).first()
    if not exists:
        raise HTTPException(status_code=404, detail="Bank account not found.")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(
            email=email,
            hashed_password=hashed_password,
            name=payload.name.strip() if payload.name else None,
        )
        .returning(users.c.id, users.c.email, users.c.name, users.c.base_currency, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Created user %s", row["id"])
    return UserResponse(**row)


@app.post("/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        base_currency=row["base_currency"],
        created_at=row["created_at"],
    )


@app.get("/user/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(users.c.id, users.c.email, users.c.base_currency, users.c.monthly_income).where(
                users.c.id == user_id
            )
        ).mappings().first()
    return UserSettingsResponse(**row)


@app.put("/user/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = UserSettingsPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    values = payload.model_dump(exclude_none=True)
    if not values:
        raise HTTPException(status_code=400, detail="Nothing to update.")
    with engine.begin() as conn:
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(**values)
            .returning(users.c.id, users.c.email, users.c.base_currency, users.c.monthly_income)
        ).mappings().first()
    return UserSettingsResponse(**row)


@app.get("/bank-accounts", response_model=list[BankAccountResponse])
def list_bank_accounts(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BankAccountResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(bank_accounts)
            .where(bank_accounts.c.user_id == user_id)
            .order_by(bank_accounts.c.id)
        ).mappings().all()
    return [BankAccountResponse(**row) for row in rows]


@app.post("/bank-accounts", response_model=BankAccountResponse)
def create_bank_account(
    payload: BankAccountPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BankAccountResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BankAccountPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        currency = resolve_currency(payload.currency, conn, user_id)
        row = conn.execute(
            insert(bank_accounts)
            .values(
                user_id=user_id,
                name=payload.name,
                type=payload.type,
                balance=payload.balance,
                currency=currency,
            )
            .returning(*bank_accounts.c)
        ).mappings().first()
    return BankAccountResponse(**row)


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    start: date | None = Query(None),
    end: date | None = Query(None),
    type: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [transactions.c.user_id == user_id]
    if start is not None:
        conditions.append(transactions.c.date >= start)
    if end is not None:
        conditions.append(transactions.c.date <= end)
    if type is not None:
        try:
            conditions.append(transactions.c.type == TransactionType.validate(type))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        rows = conn.execute(
            select(transactions)
            .where(*conditions)
            .order_by(transactions.c.date.desc(), transactions.c.id.desc())
        ).mappings().all()
    return [TransactionResponse(**row) for row in rows]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_bank_account(conn, user_id, payload.bank_account_id)
        currency = resolve_currency(payload.currency, conn, user_id)
        row = conn.execute(
            insert(transactions)
            .values(
                user_id=user_id,
                bank_account_id=payload.bank_account_id,
                amount=payload.amount,
                currency=currency,
                type=payload.type,
                category=payload.category,
                date=payload.date,
                description=payload.description,
            )
            .returning(*transactions.c)
        ).mappings().first()
    return TransactionResponse(**row)


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_bank_account(conn, user_id, payload.bank_account_id)
        currency = resolve_currency(payload.currency, conn, user_id)
        row = conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
            .values(
                bank_account_id=payload.bank_account_id,
                amount=payload.amount,
                currency=currency,
                type=payload.type,
                category=payload.category,
                date=payload.date,
                description=payload.description,
            )
            .returning(*transactions.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return TransactionResponse(**row)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = transactions.delete().where(
        transactions.c.id == transaction_id, transactions.c.user_id == user_id
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Transaction not found.")
    return {"status": "deleted"}


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[BudgetResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(budgets).where(budgets.c.user_id == user_id).order_by(budgets.c.id.desc())
        ).mappings().all()
    return [BudgetResponse(**row) for row in rows]


@app.post("/budgets", response_model=BudgetResponse)
def create_budget(
    payload: BudgetPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BudgetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        row = conn.execute(
            insert(budgets)
            .values(
                user_id=user_id,
                category=payload.category,
                amount=payload.amount,
                period=payload.period,
            )
            .returning(*budgets.c)
        ).mappings().first()
    return BudgetResponse(**row)


@app.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BudgetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        row = conn.execute(
            update(budgets)
            .where(budgets.c.id == budget_id, budgets.c.user_id == user_id)
            .values(category=payload.category, amount=payload.amount, period=payload.period)
            .returning(*budgets.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Budget not found.")
    return BudgetResponse(**row)


@app.delete("/budgets/{budget_id}")
def delete_budget(budget_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = budgets.delete().where(budgets.c.id == budget_id, budgets.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Budget not found.")
    return {"status": "deleted"}


@app.get("/goals", response_model=list[GoalResponse])
def list_goals(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[GoalResponse]:
    user_id = get_user_id(x_user_id)
    return [GoalResponse(**goal) for goal in goal_service.list_goals(engine, user_id)]


@app.post("/goals", response_model=GoalResponse)
def create_goal(
    payload: GoalPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    goal = goal_service.create_goal(engine, user_id, **payload.model_dump())
    return GoalResponse(**goal)


# Registered before /goals/{goal_id} so "conflicts" is not read as an id.
@app.get("/goals/conflicts", response_model=reports.GoalConflictReport)
def goal_conflicts(x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return reports.check_goal_conflicts(engine, user_id)


@app.get("/goals/{goal_id}", response_model=GoalResponse)
def get_goal(goal_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    return GoalResponse(**goal_service.get_goal(engine, user_id, goal_id))


@app.put("/goals/{goal_id}", response_model=GoalResponse)
def update_goal(
    goal_id: int,
    payload: GoalUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    goal = goal_service.update_goal(
        engine, user_id, goal_id, payload.model_dump(exclude_unset=True)
    )
    return GoalResponse(**goal)


@app.delete("/goals/{goal_id}")
def delete_goal(goal_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    goal_service.delete_goal(engine, user_id, goal_id)
    return {"status": "deleted"}


@app.post("/goals/{goal_id}/contribute", response_model=GoalResponse)
def contribute_to_goal(
    goal_id: int,
    payload: ContributionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    return GoalResponse(**goal_service.contribute_to_goal(engine, user_id, goal_id, payload.amount))


@app.get("/planned-events", response_model=list[PlannedEventResponse])
def list_planned_events(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[PlannedEventResponse]:
    user_id = get_user_id(x_user_id)
    return [
        PlannedEventResponse(**event)
        for event in planned_event_service.list_planned_events(engine, user_id)
    ]


@app.post("/planned-events", response_model=PlannedEventResponse)
def create_planned_event(
    payload: PlannedEventPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> PlannedEventResponse:
    user_id = get_user_id(x_user_id)
    event = planned_event_service.create_planned_event(engine, user_id, **payload.model_dump())
    return PlannedEventResponse(**event)


@app.put("/planned-events/{event_id}", response_model=PlannedEventResponse)
def update_planned_event(
    event_id: int,
    payload: PlannedEventUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PlannedEventResponse:
    user_id = get_user_id(x_user_id)
    event = planned_event_service.update_planned_event(
        engine, user_id, event_id, payload.model_dump(exclude_unset=True)
    )
    return PlannedEventResponse(**event)


@app.delete("/planned-events/{event_id}")
def delete_planned_event(
    event_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    planned_event_service.delete_planned_event(engine, user_id, event_id)
    return {"status": "deleted"}


@app.post("/planned-events/{event_id}/complete", response_model=CompletionResponse)
def complete_planned_event(
    event_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CompletionResponse:
    user_id = get_user_id(x_user_id)
    return CompletionResponse(
        **planned_event_service.complete_planned_event(engine, user_id, event_id)
    )


@app.post("/planned-events/{event_id}/undo", response_model=CompletionResponse)
def undo_complete_planned_event(
    event_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CompletionResponse:
    user_id = get_user_id(x_user_id)
    return CompletionResponse(
        **planned_event_service.undo_complete_planned_event(engine, user_id, event_id)
    )


@app.get("/holdings", response_model=list[HoldingResponse])
def list_holdings(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[HoldingResponse]:
    user_id = get_user_id(x_user_id)
    return [HoldingResponse(**row) for row in holding_service.list_holdings(engine, user_id)]


@app.post("/holdings", response_model=HoldingResponse)
def create_holding(
    payload: HoldingPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> HoldingResponse:
    user_id = get_user_id(x_user_id)
    holding = holding_service.create_holding(
        engine, user_id, PRICE_SOURCE, **payload.model_dump()
    )
    return HoldingResponse(**holding)


@app.delete("/holdings/{holding_id}")
def delete_holding(holding_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    holding_service.delete_holding(engine, user_id, holding_id)
    return {"status": "deleted"}


@app.get("/reports/expense-summary", response_model=reports.SummaryReport)
def expense_summary(
    start: date | None = Query(None),
    end: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_expense_summary(engine, user_id, start, end)


@app.get("/reports/income-summary", response_model=reports.SummaryReport)
def income_summary(
    start: date | None = Query(None),
    end: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_income_summary(engine, user_id, start, end)


@app.get("/reports/category-breakdown", response_model=reports.CategoryBreakdown)
def category_breakdown(
    start: date | None = Query(None),
    end: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_category_breakdown(engine, user_id, start, end)


@app.get("/reports/income-vs-expense", response_model=reports.IncomeVsExpense)
def income_vs_expense(
    period: str = Query(Periodicity.MONTHLY),
    reference: date | None = Query(None, alias="date"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_income_vs_expense(engine, user_id, period, reference)


@app.get("/reports/monthly-income-vs-expense", response_model=reports.IncomeVsExpense)
def monthly_income_vs_expense(x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return reports.get_monthly_income_vs_expense(engine, user_id)


@app.get("/reports/budget-vs-actual", response_model=reports.BudgetVsActual)
def budget_vs_actual(
    period: str = Query(Periodicity.MONTHLY),
    reference: date | None = Query(None, alias="date"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_budget_vs_actual(engine, user_id, period, reference)


@app.get("/reports/budget-performance", response_model=list[reports.BudgetPerformance])
def budget_performance(x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return reports.get_user_budget_performance(engine, user_id)


@app.get("/reports/asset-allocation", response_model=reports.AssetAllocation)
def asset_allocation(
    group_by: str = Query("asset_type"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return reports.get_asset_allocation(engine, user_id, group_by)


@app.get("/reports/goal-progress", response_model=list[reports.GoalProgress])
def goal_progress(x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return reports.get_goal_progress_report(engine, user_id)


@app.get("/reports/recurring", response_model=list[reports.RecurringReportItem])
def recurring_transactions(x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return reports.detect_recurring_transactions(engine, user_id)


@app.post("/currency/refresh", response_model=list[RateRefreshResponse])
def refresh_currency_rates(
    base: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[RateRefreshResponse]:
    get_user_id(x_user_id)
    bases = [base] if base else RATE_BASE_CURRENCIES
    results = [update_currency_rates(engine, RATE_PROVIDER, item) for item in bases]
    return [
        RateRefreshResponse(
            base=result.base,
            rate_count=result.rate_count,
            rate_date=result.rate_date,
            used_fallback=result.used_fallback,
            source_date=result.source_date,
        )
        for result in results
    ]


@app.get("/currency/rates/historical", response_model=HistoricalRateResponse)
def historical_rate(
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query(..., alias="to"),
    on_date: date = Query(..., alias="date"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> HistoricalRateResponse:
    get_user_id(x_user_id)
    try:
        from_code = normalize_currency(from_currency)
        to_code = normalize_currency(to_currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.connect() as conn:
        rate = get_historical_exchange_rate(conn, from_code, to_code, on_date)
    return HistoricalRateResponse(from_currency=from_code, to_currency=to_code, date=on_date, rate=rate)
