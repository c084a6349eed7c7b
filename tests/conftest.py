"""
Pytest fixtures for the FoodCost app.
"""
import pytest

from foodcost import create_app
from foodcost.models import db, Client


@pytest.fixture
def app():
    """App on a throwaway in-memory database."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test',
        'IFOOD_CLIENT_ID': 'test-client-id',
        'IFOOD_CLIENT_SECRET': 'test-client-secret',
        'IFOOD_BASE_URL': 'https://ifood.test',
    })
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _create_tenant(app, email, name):
    with app.app_context():
        tenant = Client(email=email, name=name, company_name=f"{name} Ltda")
        db.session.add(tenant)
        db.session.commit()
        return tenant.id


@pytest.fixture
def tenant(app):
    """Id of the restaurant the requests act for."""
    return _create_tenant(app, "cozinha@test.com", "Cozinha da Ana")


@pytest.fixture
def other_tenant(app):
    return _create_tenant(app, "outro@test.com", "Outro Bistro")


@pytest.fixture
def headers(tenant):
    return {'X-Client-Id': str(tenant)}


@pytest.fixture
def other_headers(other_tenant):
    return {'X-Client-Id': str(other_tenant)}
