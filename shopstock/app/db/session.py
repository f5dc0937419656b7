from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from shopstock.app.core import config


def make_engine(url: str, **kwargs) -> Engine:
    """
    Engine Postgres (prod) ou SQLite (tests / dev local).

    SQLite : foreign keys activées à chaque connexion + busy timeout,
    pour que les writers concurrents attendent au lieu d'échouer.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", config.SQLITE_TIMEOUT)
        eng = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return eng

    return create_engine(url, pool_pre_ping=True, **kwargs)


def make_session_factory(eng: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=eng, autoflush=False, autocommit=False)


engine = make_engine(config.DATABASE_URL)
SessionLocal = make_session_factory(engine)
