"""Add disabled_at column to provider_api_keys table."""

import sqlite3
from typing import Optional

from sqlalchemy.engine import make_url

from keypool.core.config import settings


def database_path(database_url: Optional[str] = None) -> str:
    """Filesystem path of the SQLite database named by the URL."""
    url = make_url(database_url or settings.database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        raise ValueError(f"Not a file-backed SQLite database: {url.render_as_string(hide_password=True)}")
    return url.database


def migrate(db_path: Optional[str] = None):
    """Add disabled_at column to provider_api_keys table."""
    db_path = db_path or database_path()

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            ALTER TABLE provider_api_keys
            ADD COLUMN disabled_at DATETIME
        """)

        # Keys already auto-disabled start their cooldown now
        cursor.execute("""
            UPDATE provider_api_keys
            SET disabled_at = CURRENT_TIMESTAMP
            WHERE status = 'disabled' AND consecutive_failures > 0
        """)

        conn.commit()
        print(f"✓ Successfully added disabled_at column to provider_api_keys table in {db_path}")
    except sqlite3.OperationalError as e:
        if "duplicate column name" in str(e).lower():
            print("✓ Column disabled_at already exists")
        else:
            raise
    finally:
        conn.close()

if __name__ == "__main__":
    migrate()
