"""Entity tables shared by every SQL backend.

The Core ``Table`` objects are the one description of the eight finance
collections: column kinds drive type normalization, scalar ``default`` values
fill absent fields, and ``INSERT_ORDER`` is the foreign-key precedence used for
bulk writes.
"""

from __future__ import annotations

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
    Text,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("profile_image_url", String(500)),
    Column("role", String(20), nullable=False, default="user"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_email_verified", Boolean, nullable=False, default=False),
    Column("email_verification_token", String(255)),
    Column("password_reset_token", String(255)),
    Column("password_reset_expires", DateTime(timezone=True)),
    Column("last_login_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("color", String(20), nullable=False, default="#0F766E"),
    Column("type", String(20), nullable=False, default="expense"),
    Column("parent_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("type", String(50), nullable=False),
    Column("balance", Numeric(14, 2), nullable=False, default=0),
    Column("currency", String(3), nullable=False, default="USD"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("description", Text, nullable=False),
    Column("date", Date, nullable=False),
    Column("type", String(20), nullable=False),
    Column("tags", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("period", String(20), nullable=False, default="monthly"),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("target_amount", Numeric(14, 2), nullable=False),
    Column("current_amount", Numeric(14, 2), nullable=False, default=0),
    Column("target_date", Date),
    Column("is_completed", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

bills = Table(
    "bills",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("frequency", String(20), nullable=False, default="monthly"),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="SET NULL")),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("last_paid", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("barcode", String(100), unique=True),
    Column("category", String(100)),
    Column("brand", String(100)),
    Column("average_price", Numeric(14, 2)),
    Column("currency", String(3), nullable=False, default="USD"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# users -> categories -> accounts -> transactions, then the independent leaves.
INSERT_ORDER: tuple[str, ...] = (
    "users",
    "categories",
    "accounts",
    "transactions",
    "budgets",
    "goals",
    "bills",
    "products",
)

TABLES: dict[str, Table] = {name: metadata.tables[name] for name in INSERT_ORDER}


def get_table(entity: str) -> Table:
    try:
        return TABLES[entity]
    except KeyError:
        raise ValueError(f"unknown entity collection: {entity}") from None


def scalar_default(column: Column):
    default = column.default
    if default is not None and default.is_scalar:
        return default.arg
    return None


def is_timestamp(column: Column) -> bool:
    return isinstance(column.type, DateTime)


def is_date(column: Column) -> bool:
    return isinstance(column.type, Date) and not isinstance(column.type, DateTime)


def is_boolean(column: Column) -> bool:
    return isinstance(column.type, Boolean)


def is_numeric(column: Column) -> bool:
    return isinstance(column.type, Numeric)
