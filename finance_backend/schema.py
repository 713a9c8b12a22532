from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
)

from finance_backend.config import SYSTEM_DEFAULT_CURRENCY

metadata = MetaData()

MONEY = Numeric(18, 2)
PRICE = Numeric(20, 8)
RATE = Numeric(24, 10)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("name", String(255)),
    Column("base_currency", String(3), nullable=False, server_default=SYSTEM_DEFAULT_CURRENCY),
    Column("monthly_income", MONEY),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

bank_accounts = Table(
    "bank_accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(50), nullable=False),
    Column("balance", MONEY, nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("bank_account_id", Integer, ForeignKey("bank_accounts.id")),
    Column("amount", MONEY, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("type", String(20), nullable=False, server_default="EXPENSE"),
    Column("category", String(50), nullable=False, server_default="OTHER"),
    Column("description", String(500)),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("category", String(50), nullable=False),
    Column("amount", MONEY, nullable=False),
    Column("period", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("description", String(500)),
    Column("target_amount", MONEY, nullable=False),
    Column("saved_amount", MONEY, nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False),
    Column("target_date", Date, nullable=False),
    Column("completed", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

planned_events = Table(
    "planned_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("target_date", Date, nullable=False),
    Column("estimated_cost", MONEY, nullable=False),
    Column("saved_so_far", MONEY, nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False),
    Column("category", String(50), nullable=False, server_default="OTHER"),
    Column("recurrence", String(20), nullable=False, server_default="ONE_TIME"),
    Column("completed", Boolean, nullable=False, server_default="0"),
    Column(
        "completed_tx_id",
        Integer,
        ForeignKey("transactions.id", ondelete="SET NULL"),
    ),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

holdings = Table(
    "holdings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("platform", String(100), nullable=False),
    Column("ticker", String(50), nullable=False),
    Column("name", String(255), nullable=False),
    Column("asset_type", String(20), nullable=False),
    Column("quantity", PRICE, nullable=False),
    Column("avg_cost", PRICE, nullable=False),
    Column("holding_currency", String(3), nullable=False),
    Column("last_price", PRICE, nullable=False, server_default="0"),
    Column("converted_value", MONEY, nullable=False, server_default="0"),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

currency_rates = Table(
    "currency_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("base", String(3), nullable=False),
    Column("target", String(3), nullable=False),
    Column("rate", RATE, nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("base", "target", name="uq_currency_rates_base_target"),
)

currency_rate_history = Table(
    "currency_rate_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("base", String(3), nullable=False),
    Column("target", String(3), nullable=False),
    Column("rate", RATE, nullable=False),
    Column("rate_date", Date, nullable=False),
    # Day the provider actually observed this rate; differs from rate_date
    # for rows carried forward by the fallback.
    Column("source_date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint(
        "base", "target", "rate_date", name="uq_currency_rate_history_base_target_date"
    ),
)
