import os
import sqlite3
from contextlib import contextmanager

# avant tout import shopstock : l'engine global ne doit pas viser Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from shopstock.app.core.logging_config import reset_logging  # noqa: E402
from shopstock.app.db.base import Base  # noqa: E402
from shopstock.app.db.models.models_v1 import Product, Shop, Supplier  # noqa: E402
from shopstock.app.db.session import make_engine, make_session_factory  # noqa: E402
from shopstock.services.audit import MemoryAuditSink  # noqa: E402

SHOP_ID = 1
OTHER_SHOP_ID = 2


@pytest.fixture(autouse=True)
def _plain_logging():
    # laisse remonter les logs shopstock jusqu'à caplog
    reset_logging()
    yield
    reset_logging()


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Base SQLite fichier, neuve pour chaque test.

    Fichier (et pas :memory:) pour que plusieurs sessions / threads
    voient la même base dans les tests de concurrence.
    """
    eng = make_engine(f"sqlite:///{tmp_path / 'shopstock.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def shop(db_session) -> Shop:
    s = Shop(id=SHOP_ID, name="TEST-SHOP", active=True)
    db_session.add(s)
    db_session.add(Shop(id=OTHER_SHOP_ID, name="OTHER-SHOP", active=True))
    db_session.commit()
    return s


@pytest.fixture
def supplier(db_session, shop) -> Supplier:
    s = Supplier(shop_id=SHOP_ID, name="Grossiste Tahiti", email="achat@grossiste.example")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture
def make_product(db_session, shop):
    """Crée un produit committé et retourne son id."""
    counter = {"n": 0}

    def _make(name: str | None = None, quantity: int = 0, min_quantity: int = 0, shop_id: int = SHOP_ID) -> int:
        counter["n"] += 1
        p = Product(
            shop_id=shop_id,
            sku=f"TEST-SKU-{counter['n']}",
            name=name or f"TEST-PROD-{counter['n']}",
            quantity=quantity,
            min_quantity=min_quantity,
            cost_price=Decimal("1.00"),
        )
        db_session.add(p)
        db_session.commit()
        return p.id

    return _make


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def impatient_session_factory(engine):
    """Même base, mais abandonne après 0.2 s d'attente du verrou d'écriture."""
    eng = make_engine(engine.url.render_as_string(hide_password=False), connect_args={"timeout": 0.2})
    try:
        yield make_session_factory(eng)
    finally:
        eng.dispose()


@pytest.fixture
def write_lock(engine):
    """Context manager : une autre connexion tient le verrou d'écriture SQLite (BEGIN IMMEDIATE)."""

    @contextmanager
    def _held():
        conn = sqlite3.connect(engine.url.database, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()

    return _held
