from __future__ import annotations

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import make_url

from finstore.config import settings
from finstore.dialects import STRATEGIES
from finstore.tables import INSERT_ORDER, metadata


def server_url(raw: str):
    url = make_url(raw)
    for strategy in STRATEGIES.values():
        if url.drivername in strategy.schemes:
            return url.set(drivername=strategy.driver)
    return url


def main() -> None:
    url = server_url(settings.database_url)
    engine = create_engine(url, future=True, pool_pre_ping=True)
    try:
        with engine.begin() as conn:
            existing = set(inspect(conn).get_table_names())
            metadata.create_all(conn, checkfirst=True)
        for table in INSERT_ORDER:
            print(f"{'Exists' if table in existing else 'Created'}: {table}")
    finally:
        engine.dispose()
    print("Schema bootstrap finished.")


if __name__ == "__main__":
    main()
