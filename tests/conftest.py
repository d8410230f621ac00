"""
Shared pytest fixtures for the Loan Query Workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - application: Registered App.No APP123
    - register_app: Factory for further registry rows
    - make_group: Factory raising a query group through the store
    - flask_session: requests.Session stand-in backed by the test client
    - api: QueryWorkflowClient wired to flask_session
"""

from urllib.parse import urlsplit

import pytest
import requests

from query_workflow import create_app
from query_workflow.client import QueryWorkflowClient
from query_workflow.models import db as _db
from query_workflow.models.application import Application
from query_workflow.services import query_store


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


def _register_application(app_number="APP123", customer_name="Asha Traders", branch="Mumbai"):
    row = Application(app_number=app_number, customer_name=customer_name, branch=branch)
    _db.session.add(row)
    _db.session.commit()
    return row


@pytest.fixture()
def application():
    return _register_application()


@pytest.fixture()
def register_app():
    """Factory for additional registry rows."""
    return _register_application


@pytest.fixture()
def make_group(application):
    """Raise a group against APP123; keyword overrides pass through."""

    def _make(queries=("Missing KYC doc",), send_to="Sales", submitted_by="ops.user", app_number="APP123"):
        return query_store.create_group(app_number, list(queries), send_to, submitted_by=submitted_by)

    return _make


# ── HTTP client over the Flask test client ───────────────────────────────


class FlaskTestSession:
    """``requests.Session`` stand-in that routes calls into the Flask test client.

    ``fail_after_send`` makes the next N POSTs reach the server and then
    raise ``requests.Timeout``, i.e. the write landed but the caller never
    saw the response.
    """

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []
        self.fail_after_send = 0

    def request(self, method, url, params=None, json=None, timeout=None, headers=None):
        parts = urlsplit(url)
        self.calls.append((method, parts.path, params, json))
        resp = self.test_client.open(
            parts.path, method=method, query_string=params, json=json, headers=headers,
        )
        if method == "POST" and self.fail_after_send:
            self.fail_after_send -= 1
            raise requests.Timeout("read timed out")

        out = requests.Response()
        out.status_code = resp.status_code
        out._content = resp.get_data()
        out.encoding = "utf-8"
        out.headers.update(dict(resp.headers))
        out.url = url
        return out


@pytest.fixture()
def flask_session(client):
    return FlaskTestSession(client)


@pytest.fixture()
def api(flask_session):
    return QueryWorkflowClient(
        "http://workflow.test",
        team="sales",
        actor="r.verma",
        session=flask_session,
        sleep=lambda _seconds: None,
    )
