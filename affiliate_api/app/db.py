import time
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from .settings import settings

SQL_DIR = Path(__file__).resolve().parent / "sql"

engine: Engine = create_engine(settings.database_url, pool_pre_ping=True)

def now_ms() -> int:
    return int(time.time() * 1000)

def wait_for_db(bind: Engine, max_seconds: int = 60) -> None:
    """
    A fresh database container can take a few seconds to accept connections.
    This retries until it's reachable or times out.
    """
    start = time.time()
    while True:
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > max_seconds:
                raise
            time.sleep(2)

def run_migrations(bind: Optional[Engine] = None) -> None:
    bind = bind or engine
    wait_for_db(bind)
    for path in sorted(SQL_DIR.glob("*.sql")):
        sql = path.read_text(encoding="utf-8")
        # one statement per execute; sqlite refuses multi-statement strings
        statements = [s.strip() for s in sql.split(";") if s.strip()]
        with bind.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))
