import pytest

from config import TestingConfig
from esg_app import create_app, db
from esg_app.models import Sector, Subsector
from esg_app.taxonomy import Scope, add_child_and_link


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Request context, so flash() based notifications work outside a view."""
    with app.test_request_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    resp = client.post("/login", data={"username": "admin", "password": "admin123"})
    assert resp.status_code == 302
    return client


@pytest.fixture
def industry(app):
    """A small taxonomy: Industry > ISO 14001 > Climate change > GHG emissions."""
    with app.app_context():
        db.session.add(Sector(name="Industry"))
        db.session.add(Sector(name="Transport"))
        db.session.add(Subsector(name="Chemicals", sector_name="Industry"))
        db.session.commit()
        scope = Scope("Industry")
        add_child_and_link("standard", "ISO 14001", scope)
        add_child_and_link("issue", "Climate change", scope, standard_name="ISO 14001")
        add_child_and_link(
            "criteria", "GHG emissions", scope,
            {"description": "Scope 1 and 2 emissions"},
            standard_name="ISO 14001", issue_name="Climate change",
        )
        add_child_and_link(
            "indicator", "Direct CO2 emissions", scope,
            {"unit": "tCO2e", "axis": "environment"},
            standard_name="ISO 14001", issue_name="Climate change",
            criteria_name="GHG emissions",
        )
    return scope
