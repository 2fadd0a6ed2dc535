"""Apply SQL schema for local PostgreSQL setup."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def main() -> None:
    # Only the database URL is needed here; signing secrets are not.
    database_url = os.getenv("CARDVAULT_DATABASE_URL")
    if not database_url:
        raise RuntimeError("CARDVAULT_DATABASE_URL is required for migration")

    import psycopg

    schema_path = Path(__file__).with_name("db_schema.sql")
    schema_sql = schema_path.read_text(encoding="utf-8")

    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info("Applied schema from %s", schema_path.name)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
