"""Schema provisioning for migration targets.

Only the local-file dialect gets DDL. Server-hosted and managed providers are
verified: their tables must exist before a migration (``scripts/create_server_schema.py``
creates them on a self-hosted server), because the credentials used at
migration time may not be allowed to run DDL.
"""

from __future__ import annotations

import logging

import requests
from sqlalchemy.exc import SQLAlchemyError

from .errors import SchemaProvisioningFailed
from .tables import INSERT_ORDER
from .targets import MigrationTarget

logger = logging.getLogger(__name__)

SQLITE_DDL: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS "users" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "username" text NOT NULL UNIQUE,
      "email" text NOT NULL UNIQUE,
      "password_hash" text NOT NULL,
      "first_name" text,
      "last_name" text,
      "profile_image_url" text,
      "role" text DEFAULT 'user' NOT NULL,
      "is_active" integer DEFAULT 1 NOT NULL,
      "is_email_verified" integer DEFAULT 0 NOT NULL,
      "email_verification_token" text,
      "password_reset_token" text,
      "password_reset_expires" integer,
      "last_login_at" integer,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "categories" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "name" text NOT NULL,
      "color" text DEFAULT '#0F766E' NOT NULL,
      "type" text DEFAULT 'expense' NOT NULL,
      "parent_id" integer,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade,
      FOREIGN KEY ("parent_id") REFERENCES "categories"("id") ON DELETE set null
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "accounts" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "name" text NOT NULL,
      "type" text NOT NULL,
      "balance" real DEFAULT 0 NOT NULL,
      "currency" text DEFAULT 'USD' NOT NULL,
      "is_active" integer DEFAULT 1 NOT NULL,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "transactions" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "account_id" integer NOT NULL,
      "category_id" integer,
      "amount" real NOT NULL,
      "description" text NOT NULL,
      "date" integer NOT NULL,
      "type" text NOT NULL,
      "tags" text,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade,
      FOREIGN KEY ("account_id") REFERENCES "accounts"("id") ON DELETE cascade,
      FOREIGN KEY ("category_id") REFERENCES "categories"("id") ON DELETE set null
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "budgets" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "category_id" integer NOT NULL,
      "amount" real NOT NULL,
      "period" text DEFAULT 'monthly' NOT NULL,
      "start_date" integer NOT NULL,
      "end_date" integer,
      "is_active" integer DEFAULT 1 NOT NULL,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade,
      FOREIGN KEY ("category_id") REFERENCES "categories"("id") ON DELETE cascade
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "goals" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "name" text NOT NULL,
      "description" text,
      "target_amount" real NOT NULL,
      "current_amount" real DEFAULT 0 NOT NULL,
      "target_date" integer,
      "is_completed" integer DEFAULT 0 NOT NULL,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "bills" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "user_id" integer NOT NULL,
      "name" text NOT NULL,
      "amount" real NOT NULL,
      "due_date" integer NOT NULL,
      "frequency" text DEFAULT 'monthly' NOT NULL,
      "category_id" integer,
      "account_id" integer,
      "is_active" integer DEFAULT 1 NOT NULL,
      "last_paid" integer,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      FOREIGN KEY ("user_id") REFERENCES "users"("id") ON DELETE cascade,
      FOREIGN KEY ("category_id") REFERENCES "categories"("id") ON DELETE set null,
      FOREIGN KEY ("account_id") REFERENCES "accounts"("id") ON DELETE set null
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "products" (
      "id" integer PRIMARY KEY AUTOINCREMENT NOT NULL,
      "name" text NOT NULL,
      "barcode" text UNIQUE,
      "category" text,
      "brand" text,
      "average_price" real,
      "currency" text DEFAULT 'USD' NOT NULL,
      "created_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL,
      "updated_at" integer DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)) NOT NULL
    )
    """,
]


class SchemaProvisioner:
    def ensure(self, target: MigrationTarget) -> list[str]:
        """Make sure ``target`` has every entity table; returns the required table names."""
        required = list(INSERT_ORDER)
        try:
            if target.creates_schema:
                target.execute_ddl(SQLITE_DDL)
                logger.info("Ensured local-file schema with %d tables", len(SQLITE_DDL))
                return required
            missing = target.missing_tables(required)
        except (SQLAlchemyError, requests.RequestException) as exc:
            raise SchemaProvisioningFailed(f"schema provisioning failed: {exc}") from exc
        if missing:
            raise SchemaProvisioningFailed(
                f"target is missing tables: {', '.join(missing)}; create them before migrating",
                missing_tables=missing,
            )
        logger.info("Schema verification for %s target passed", target.dialect.value)
        return required
