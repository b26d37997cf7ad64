from functools import lru_cache
from typing import Callable, Generator

from fastapi import BackgroundTasks, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from quorumgate.core.approval import (
    CompletionDispatcher,
    DatabasePolicyResolver,
    PolicyRegistry,
    RequestLifecycleManager,
    load_policies,
)
from quorumgate.core.config import get_settings
from quorumgate.core.rbac import DatabaseRoleProvider
from quorumgate.core.security import decode_token
from quorumgate.core.transactions import CompositeApplier
from quorumgate.db.session import SessionLocal
from quorumgate.services import DatabaseAuditSink, NotificationService

bearer_scheme = HTTPBearer(auto_error=False)


def get_session_factory() -> Callable[[], Session]:
    """Session factory dependency."""
    return SessionLocal


def get_db(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> Generator:
    """Database session dependency."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> str:
    """Get the authenticated user id from the bearer JWT."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials:
        user_id = decode_token(credentials.credentials)
        if user_id:
            return user_id

    raise credentials_exception


@lru_cache
def get_policy_registry() -> PolicyRegistry:
    """Policies from the configured YAML file, loaded once."""
    settings = get_settings()
    return load_policies(settings.policy_file, default_expiry_seconds=settings.default_expiry_seconds)


def get_policy_resolver(db: Session = Depends(get_db)):
    """YAML policies when a policy file is configured, else the database."""
    if get_settings().policy_file:
        return get_policy_registry()
    return DatabasePolicyResolver(db)


def get_manager(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    policies=Depends(get_policy_resolver),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> RequestLifecycleManager:
    """Lifecycle manager wired to the database collaborators.

    Webhook delivery runs as a background task after the response is sent.
    """
    dispatcher = CompletionDispatcher(
        CompositeApplier.for_session(db),
        audit=DatabaseAuditSink(session_factory),
        notifier=NotificationService(session_factory, schedule=background_tasks.add_task),
    )
    return RequestLifecycleManager(db, policies, DatabaseRoleProvider(db), dispatcher)
