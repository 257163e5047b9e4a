"""Apply ``*.sql`` files in this directory once each, in name order."""

from pathlib import Path

from modelgate.db.connection import get_conn

MIGRATIONS_DIR = Path(__file__).resolve().parent


def run_migrations(path: str | None = None) -> list[str]:
    applied_now: list[str] = []
    with get_conn(path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations("
            "name TEXT PRIMARY KEY, "
            "applied_at TEXT NOT NULL)"
        )
        applied = {
            row[0] for row in conn.execute("SELECT name FROM schema_migrations").fetchall()
        }
        for file in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if file.name in applied:
                continue
            conn.executescript(file.read_text())
            conn.execute(
                "INSERT INTO schema_migrations(name, applied_at) VALUES(?, datetime('now'))",
                (file.name,),
            )
            applied_now.append(file.name)
    return applied_now


if __name__ == "__main__":
    run_migrations()
