import pytest

from emi_tracker.api import create_app
from emi_tracker.engine import FinanceEngine
from emi_tracker.migration_runner import run_all_pending
from emi_tracker.setup_sqlite import create_database


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "emitracker_test.db"
    create_database(path)
    run_all_pending(path)
    return path


@pytest.fixture
def engine(db_path):
    return FinanceEngine(db_path, bcrypt_rounds=4)


@pytest.fixture
def owner(engine):
    """First registered account, which becomes the super admin."""
    success, message, user = engine.register_user("Asha Rao", "asha@example.com", "secret123", monthly_income=100000)
    assert success, message
    return user


@pytest.fixture
def member(engine, owner):
    success, message, user = engine.register_user("Ravi Kumar", "ravi@example.com", "secret123", monthly_income=50000)
    assert success, message
    return user


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'DATABASE_PATH': str(tmp_path / "api_test.db"),
        'BCRYPT_ROUNDS': 4,
        'JWT_SECRET': 'test-secret',
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register through the API; returns (headers, user) for the new account."""
    def _register(name, email, password="secret123", **extra):
        response = client.post(
            '/api/auth/register', json={'name': name, 'email': email, 'password': password, **extra}
        )
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return {'Authorization': f"Bearer {body['token']}"}, body['user']
    return _register
