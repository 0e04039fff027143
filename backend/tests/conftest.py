"""
Pytest fixtures for StockLedger backend tests.

Provides test database setup, branch/product/user fixtures, a stock
factory, an authenticated test client, and a file-backed database with
thread helpers for concurrent-writer tests.
"""

import threading
from types import SimpleNamespace

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Branch, Product
from stockledger.models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_SALESPERSON
from stockledger.services import cache_service, stock_service
from stockledger.services.auth_service import create_user
from stockledger.services.directory_service import Actor


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        cache_service.get_cache().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch_main(db_session):
    """Create the main branch."""
    branch = Branch(code="MAIN", name="Main Branch", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_north(db_session):
    """Create a second branch."""
    branch = Branch(code="NORTH", name="North Branch", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def oil(db_session):
    product = Product(
        sku="OIL-5W30",
        name="Engine Oil 5W-30",
        default_cost_price_cents=180,
        default_selling_price_cents=250,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def brake_pad(db_session):
    product = Product(
        sku="BRK-PAD-01",
        name="Brake Pad Set",
        default_cost_price_cents=900,
        default_selling_price_cents=1500,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", "admin@stockledger.test", PASSWORD, ROLE_ADMIN)


@pytest.fixture(scope='function')
def sales_user(db_session, branch_main):
    return create_user("ana", "ana@stockledger.test", PASSWORD, ROLE_SALESPERSON, branch_main.id)


@pytest.fixture(scope='function')
def north_sales_user(db_session, branch_north):
    return create_user("ben", "ben@stockledger.test", PASSWORD, ROLE_SALESPERSON, branch_north.id)


@pytest.fixture(scope='function')
def mechanic_user(db_session, branch_main):
    return create_user("carlo", "carlo@stockledger.test", PASSWORD, ROLE_MECHANIC, branch_main.id)


@pytest.fixture(scope='function')
def other_mechanic_user(db_session, branch_main):
    return create_user("dina", "dina@stockledger.test", PASSWORD, ROLE_MECHANIC, branch_main.id)


@pytest.fixture(scope='function')
def admin(admin_user):
    """Actor for the admin account."""
    return Actor.from_user(admin_user)


@pytest.fixture(scope='function')
def salesperson(sales_user):
    return Actor.from_user(sales_user)


@pytest.fixture(scope='function')
def mechanic(mechanic_user):
    return Actor.from_user(mechanic_user)


@pytest.fixture(scope='function')
def stock(db_session, admin):
    """
    Factory: receive stock through the restock workflow.

    stock(product, branch, quantity, selling_price_cents=None, **extra)
    """
    def _make(product, branch, quantity, selling_price_cents=None, **extra):
        return stock_service.upsert_restock(
            product_id=product.id,
            branch_id=branch.id,
            quantity=quantity,
            actor=admin,
            selling_price_cents=selling_price_cents,
            **extra,
        )
    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json['data']['token']
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def sales_headers(client, sales_user):
    return auth_headers(get_auth_token(client, sales_user.username))


@pytest.fixture(scope='function')
def mechanic_headers(client, mechanic_user):
    return auth_headers(get_auth_token(client, mechanic_user.username))


# =============================================================================
# Concurrent writers
# =============================================================================


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Application on a file-backed sqlite database.

    Every thread opens its own connection, so concurrent writers contend
    for the database lock the way separate requests do.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'stockledger.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False, 'timeout': 15}},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(scope='function')
def file_world(file_app):
    """Two branches, one product and an admin on the file-backed database."""
    main = Branch(code="MAIN", name="Main Branch", is_active=True)
    north = Branch(code="NORTH", name="North Branch", is_active=True)
    product = Product(
        sku="OIL-5W30",
        name="Engine Oil 5W-30",
        default_cost_price_cents=180,
        default_selling_price_cents=250,
        is_active=True,
    )
    db.session.add_all([main, north, product])
    db.session.commit()
    admin = Actor.from_user(create_user("admin", "admin@stockledger.test", PASSWORD, ROLE_ADMIN))

    def _stock(branch_id, quantity):
        return stock_service.upsert_restock(
            product_id=product.id, branch_id=branch_id, quantity=quantity, actor=admin
        )

    return SimpleNamespace(
        app=file_app,
        main_id=main.id,
        north_id=north.id,
        product_id=product.id,
        admin=admin,
        stock=_stock,
    )


def run_concurrently(app, *calls):
    """
    Run each call in its own thread and app context.

    Returns "ok" or the raised exception for every call, in call order.
    """
    results = [None] * len(calls)

    def _worker(index, call):
        with app.app_context():
            try:
                call()
                results[index] = "ok"
            except Exception as exc:
                results[index] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    db.session.expire_all()
    return results


def pause_after_locked_read(monkeypatch, module, parties: int = 2):
    """
    Hold each thread after its first locked read in `module` until all
    `parties` threads have read the row, so every writer starts from the
    same status. Retries read without pausing.
    """
    barrier = threading.Barrier(parties, timeout=10)
    state = threading.local()
    lock_for_update = module.lock_for_update

    class _PausedQuery:
        def __init__(self, query):
            self._query = lock_for_update(query)

        def first(self):
            row = self._query.first()
            if not getattr(state, "paused", False):
                state.paused = True
                barrier.wait()
            return row

    monkeypatch.setattr(module, "lock_for_update", _PausedQuery)
