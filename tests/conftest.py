"""Pytest configuration and shared fixtures.

Every test gets its own file-backed SQLite database so that threads can
share it through separate sessions.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from quorumgate.api import deps
from quorumgate.api.main import app
from quorumgate.core.approval import (
    ApprovalPolicy,
    CompletionDispatcher,
    PolicyRegistry,
    QuorumMode,
    RequestLifecycleManager,
)
from quorumgate.core.rbac import StaticRoleProvider
from quorumgate.core.security import create_access_token
from quorumgate.db.session import init_db, make_engine
from tests.factories import METADATA_APPROVAL, PAYMENT, TOKEN_MINT, create_user_roles
from tests.fakes import FakeClock, RecordingApplier, RecordingAuditSink, RecordingNotifier


USER_ROLES = {
    "alice": {"TOKENIZATION_MANAGER"},
    "bob": {"TOKENIZATION_MANAGER"},
    "val": {"VALUATION_OFFICER"},
    "multi": {"TOKENIZATION_MANAGER", "VALUATION_OFFICER"},
    "root": {"SUPER_ADMIN"},
    "fin": {"FINANCE_OFFICER"},
    "custody": {"CUSTODY_OFFICER"},
    "compliance": {"COMPLIANCE_OFFICER"},
    "compliance2": {"COMPLIANCE_OFFICER"},
    "outsider": {"AUDITOR"},
}


def default_policies():
    return [
        ApprovalPolicy(
            action_class=METADATA_APPROVAL,
            authorized_roles={"TOKENIZATION_MANAGER", "VALUATION_OFFICER"},
            quorum_threshold=2,
            expiry_seconds=3600,
            notify_roles={"TOKENIZATION_MANAGER"},
        ),
        ApprovalPolicy(
            action_class=PAYMENT,
            quorum_mode=QuorumMode.WEIGHT,
            quorum_threshold=3,
            signers={"s1": 2, "s2": 2, "s3": 1},
            auto_apply_on_quorum=False,
            expiry_seconds=3600,
            initiator_roles={"FINANCE_OFFICER"},
            reject_roles={"FINANCE_OFFICER"},
            notify_roles={"FINANCE_OFFICER"},
        ),
        ApprovalPolicy(
            action_class=TOKEN_MINT,
            authorized_roles={"CUSTODY_OFFICER", "COMPLIANCE_OFFICER"},
            quorum_threshold=2,
            auto_apply_on_quorum=False,
            executor_roles={"CUSTODY_OFFICER"},
        ),
    ]


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    engine = make_engine(f"sqlite:///{tmp_path / 'quorumgate.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def roles():
    return StaticRoleProvider(USER_ROLES)


@pytest.fixture
def registry():
    return PolicyRegistry(default_policies())


@pytest.fixture
def applier():
    return RecordingApplier()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(applier, audit, notifier):
    return CompletionDispatcher(applier, audit=audit, notifier=notifier)


@pytest.fixture
def manager_factory(registry, roles, dispatcher, clock):
    """Build a lifecycle manager over a given session."""

    def _make(session):
        return RequestLifecycleManager(session, registry, roles, dispatcher, clock=clock)

    return _make


@pytest.fixture
def manager(manager_factory, db_session):
    return manager_factory(db_session)


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
def client(session_factory, registry):
    """TestClient over the per-test database, with users granted their roles."""
    db = session_factory()
    try:
        for user_id, user_roles in USER_ROLES.items():
            create_user_roles(db, user_id, sorted(user_roles))
        db.commit()
    finally:
        db.close()

    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_policy_resolver] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""

    def _headers(user_id):
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
