"""
Shared pytest fixtures for the Support Triage Orchestrator test suite.

Provides:
    - app: Flask application (session-scoped, inline phase execution)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset + fresh investigations dir + fakes (autouse)
    - client: Flask test client (function-scoped)
    - agent / ticket_source / clock: the fakes installed for the test
    - investigation: ticket 4711 created through the API (phase 0 done)
"""

from datetime import datetime, timedelta, timezone

import pytest

from triage import create_app
from triage.core.exceptions import AgentAuthError
from triage.models import db as _db

TICKET_ID = 4711

TICKET_BODY = (
    "Our Okta connector stopped syncing users since yesterday. The sync job "
    "shows zero accounts imported and the integration page displays a timeout."
)

FINDINGS = (
    "## Related Issues Found\n"
    "Okta sync timeouts were reported for another tenant [Source: Pylon #4000].\n"
    "Engineering is tracking pagination changes [Source: Linear ENG-42].\n"
    "## Chat Discussions\n"
    "Discussed in [Source: Slack #support-escalations, 2025-01-05].\n"
)

SYNTHESIS = (
    "=== summary.md ===\n"
    "Okta connector sync is timing out during pagination.\n"
    "=== customer-response.md ===\n"
    "Hi, thanks for reporting this. We are looking into the Okta sync timeouts.\n"
    "=== issue-draft.md ===\n"
    "Title: Okta connector sync timeout\n"
)


class FakeAgent:
    """Stands in for the agent CLI; answers by prompt kind or raises ``fail_with``."""

    argv = ["fake-agent"]
    login_hint = "Run 'fake-agent /login'"

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.findings = FINDINGS
        self.synthesis = SYNTHESIS

    def run(self, prompt, cwd=None, timeout=None, on_output=None):
        self.calls.append(prompt)
        if self.fail_with is not None:
            raise self.fail_with
        if "Generate investigation documents" in prompt:
            output = self.synthesis
        else:
            output = self.findings
        if on_output:
            for line in output.splitlines():
                if line.strip():
                    on_output(line.strip())
        return output


class FakeTicketSource:
    """Returns canned tickets; ``thread`` overrides the body returned on fetch."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.thread = None

    def fetch_ticket(self, ticket_id, cwd=None):
        self.calls.append(ticket_id)
        if self.fail_with is not None:
            raise self.fail_with
        return {
            "ticket_id": ticket_id,
            "title": "Okta sync failing",
            "customer_name": "Acme Corp",
            "request_type": "Defect",
            "product_area": "",
            "body": self.thread if self.thread is not None else TICKET_BODY,
            "tags": [],
            "link": f"https://tickets.example.com/issues/{ticket_id}",
        }


class FakeClock:
    """Injectable UTC clock for the debounce scheduler."""

    def __init__(self):
        self.now = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture()
def agent():
    return FakeAgent()


@pytest.fixture()
def ticket_source():
    return FakeTicketSource()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def session(app, _setup_db, tmp_path, agent, ticket_source, clock):
    """Per-test: fresh documents dir and fakes, rollback + recreate tables after."""
    debounce = app.extensions["debounce"]
    original = (
        app.config["INVESTIGATIONS_DIR"],
        app.extensions["agent_client"],
        app.extensions["ticket_source"],
        debounce.clock,
    )
    app.config["INVESTIGATIONS_DIR"] = str(tmp_path / "investigations")
    app.extensions["agent_client"] = agent
    app.extensions["ticket_source"] = ticket_source
    debounce.clock = clock
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    (app.config["INVESTIGATIONS_DIR"], app.extensions["agent_client"],
     app.extensions["ticket_source"], debounce.clock) = original


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def investigation(client):
    """Create ticket 4711 via the API; phase 0 has run inline."""
    res = client.post("/api/v1/investigations", json={"ticket_id": TICKET_ID})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def auth_failure():
    return AgentAuthError("Agent CLI authentication expired. Run 'fake-agent /login'.")
