from datetime import datetime, timedelta

import pytest

from tablebook.app import create_app
from tablebook.entities import Client, Table
from tablebook.extensions import db

ADMIN_TOKEN = "test-admin-token"
SEEDED_TABLES = range(1, 11)


def tomorrow_at(hour: int, minute: int = 0, days: int = 1) -> datetime:
    day = datetime.now().date() + timedelta(days=days)
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", ADMIN_TOKEN)
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "RATE_LIMIT_MAX": 1000,
    })
    with app.app_context():
        db.create_all()
        gateway = app.extensions["tablebook"].gateway
        for numeral in SEEDED_TABLES:
            Table(
                numeral=numeral,
                capacity=4,
                exclusive_view=True if numeral == 10 else None,
            ).save(gateway)
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def engine(app):
    return app.extensions["tablebook"]


@pytest.fixture
def gateway(engine):
    return engine.gateway


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def ana():
    return Client(name="Ana Silva", phone="11999999999")


@pytest.fixture
def slot():
    """Factory for wall-clock times in the future: ``slot(19)`` is tomorrow at 19:00."""
    return tomorrow_at
