"""Simple migration runner for SQLite using provided SQL files in migrations/"""
from pathlib import Path
import sqlite3
import sys

BASE = Path(__file__).parent
DB_PATH = BASE / "app.db"
MIGRATIONS = sorted((BASE / "migrations").glob("*.sql"))


def run(db_path: Path = DB_PATH):
    """Execute SQL migration files against a local SQLite database.

    The function applies every `migrations/*.sql` file in lexical
    order. The files are written to be re-runnable (`IF NOT EXISTS`),
    so running the script twice is harmless.
    """
    print("Using database:", db_path)
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.cursor()
        for m in MIGRATIONS:
            print("Applying:", m.name)
            sql = m.read_text(encoding="utf-8")
            cur.executescript(sql)
        conn.commit()
    finally:
        conn.close()
    print("Migrations applied.")


if __name__ == '__main__':
    run(Path(sys.argv[1]) if len(sys.argv) > 1 else DB_PATH)
