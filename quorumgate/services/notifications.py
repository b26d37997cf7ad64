"""Notification service for in-app and webhook delivery.

Handles:
- In-app notifications for every user in the fan-out
- Webhook notifications to external systems
- Retry logic for failed webhook deliveries, run off the caller's path
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Set
from uuid import UUID

import httpx
from jinja2 import Template
from sqlalchemy.orm import Session

from quorumgate.core.approval.interfaces import ApprovalEvent, Recipients
from quorumgate.core.config import Settings, get_settings
from quorumgate.core.phases import PHASE_EVENTS, ProjectStatus, phase_label
from quorumgate.core.rbac import DatabaseRoleProvider
from quorumgate.db.models import (
    Notification,
    NotificationLog,
    NotificationChannel,
    NotificationEventType,
    TokenizationProject,
)

logger = logging.getLogger(__name__)


# Message templates
MESSAGE_TEMPLATES = {
    NotificationEventType.REQUEST_COMPLETED: {
        "title": "Approval completed: {{ action_class }}",
        "message": "Request {{ request_id }} met its quorum ({{ quorum.current }}/{{ quorum.required }}) "
                   "and was applied.",
    },
    NotificationEventType.REQUEST_READY: {
        "title": "Ready to execute: {{ action_class }}",
        "message": "Request {{ request_id }} collected the required signatures "
                   "({{ quorum.current }}/{{ quorum.required }}) and can be executed.",
    },
    NotificationEventType.TRANSACTION_READY: {
        "title": "Transaction ready: {{ action_class }}",
        "message": "Multi-sign transaction {{ target_ref.transaction_id }} is executable.",
    },
}

PHASE_TEMPLATE = {
    "title": "Project advanced to {{ phase_label }}",
    "message": "Project {{ target_ref.project_id }} moved from {{ from_label }} to {{ phase_label }} "
               "after {{ approvers | length }} approval(s).",
}


def resolve_event_type(event: ApprovalEvent) -> NotificationEventType:
    """Most specific event type for an approval event."""
    try:
        return PHASE_EVENTS[ProjectStatus(event.data.get("to_state"))]
    except (KeyError, ValueError):
        pass
    if event.event_type == NotificationEventType.REQUEST_READY.value and event.target_ref.get("transaction_id"):
        return NotificationEventType.TRANSACTION_READY
    return NotificationEventType(event.event_type)


def render_message(event_type: NotificationEventType, event: ApprovalEvent) -> Dict[str, str]:
    """Render the title and message for an event."""
    template = MESSAGE_TEMPLATES.get(event_type, PHASE_TEMPLATE)
    context = event.to_dict()
    context.update(event.data)
    context.setdefault("quorum", {})
    context.setdefault("approvers", [])
    context["from_label"] = phase_label(event.data.get("from_state"))
    context["phase_label"] = phase_label(event.data.get("to_state"))
    return {
        "title": Template(template["title"]).render(**context),
        "message": Template(template["message"]).render(**context),
    }


class NotificationService:
    """
    Fans approval events out to users and webhooks.

    Each delivery runs in its own session from ``session_factory`` so a
    failing notification never touches the approval transaction. In-app
    rows are written inline; webhooks are handed to ``schedule`` (FastAPI's
    ``BackgroundTasks.add_task`` in the API) or, without one, a daemon
    thread, so the approving caller never waits on a slow endpoint.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        roles=None,
        webhook_urls: Optional[Sequence[str]] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        schedule: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize notification service.

        Args:
            session_factory: Creates database sessions
            roles: Role provider with ``users_with_roles`` and ``all_users``;
                defaults to the ``user_roles`` table
            webhook_urls: Webhook endpoints; defaults to configured URLs
            settings: Application settings
            transport: httpx async transport override
            schedule: Called as ``schedule(func, *args)`` to run webhook
                delivery after the caller returns
        """
        self.session_factory = session_factory
        self.roles = roles
        self.settings = settings or get_settings()
        self.webhook_urls = list(
            webhook_urls if webhook_urls is not None else self.settings.webhook_urls_list
        )
        self.transport = transport
        self.schedule = schedule

    def notify(self, recipients: Recipients, event: ApprovalEvent) -> List[str]:
        """
        Send notifications for an event.

        Args:
            recipients: Roles, all users and/or the project assignee to notify
            event: The approval event

        Returns:
            List of in-app notification IDs
        """
        event_type = resolve_event_type(event)
        content = render_message(event_type, event)

        notification_ids = self._send_in_app(recipients, event_type, event, content)

        if self.webhook_urls:
            self._schedule_webhooks(event_type, event, content)

        logger.info(
            "Sent %s for request %s to %d users, %d webhooks queued",
            event_type.value, event.request_id, len(notification_ids), len(self.webhook_urls),
        )
        return notification_ids

    def _send_in_app(
        self,
        recipients: Recipients,
        event_type: NotificationEventType,
        event: ApprovalEvent,
        content: Dict[str, str],
    ) -> List[str]:
        """Create one in-app notification per recipient user."""
        db = self.session_factory()
        try:
            roles = self.roles if self.roles is not None else DatabaseRoleProvider(db)
            user_ids: Set[str] = set()
            if recipients.all_users:
                user_ids |= set(roles.all_users())
            elif recipients.roles:
                user_ids |= set(roles.users_with_roles(recipients.roles))
            if recipients.assignee:
                assignee_id = self._project_assignee(db, event)
                if assignee_id:
                    user_ids.add(assignee_id)

            notifications = [
                Notification(
                    user_id=user_id,
                    event_type=event_type.value,
                    title=content["title"],
                    message=content["message"],
                    entity_type="approval_request",
                    entity_id=event.request_id,
                    data=event.to_dict(),
                )
                for user_id in sorted(user_ids)
            ]
            db.add_all(notifications)
            db.commit()
            return [str(n.id) for n in notifications]
        finally:
            db.close()

    def _project_assignee(self, db: Session, event: ApprovalEvent) -> Optional[str]:
        project_id = _as_uuid(event.target_ref.get("project_id"))
        if project_id is None:
            return None
        project = db.query(TokenizationProject).filter(TokenizationProject.id == project_id).first()
        return project.assignee_id if project else None

    def _schedule_webhooks(
        self,
        event_type: NotificationEventType,
        event: ApprovalEvent,
        content: Dict[str, str],
    ) -> None:
        if self.schedule is not None:
            self.schedule(self.deliver_webhooks, event_type, event, content)
            return
        thread = threading.Thread(
            target=asyncio.run,
            args=(self.deliver_webhooks(event_type, event, content),),
            name=f"webhooks-{event.request_id}",
            daemon=True,
        )
        thread.start()

    async def deliver_webhooks(
        self,
        event_type: NotificationEventType,
        event: ApprovalEvent,
        content: Dict[str, str],
    ) -> List[str]:
        """Deliver an event to every configured webhook. Returns log IDs."""
        log_ids = []
        for url in self.webhook_urls:
            log_ids.append(await self._send_webhook(url, event_type, event, content))
        return log_ids

    async def _send_webhook(
        self,
        url: str,
        event_type: NotificationEventType,
        event: ApprovalEvent,
        content: Dict[str, str],
    ) -> str:
        """Send a webhook notification with retries, logging each delivery.

        No database session is held across a network await.
        """
        payload = self._build_webhook_payload(event_type, event, content)
        log_id = self._record_webhook(
            channel=NotificationChannel.WEBHOOK.value,
            event_type=event_type.value,
            recipient=url,
            approval_request_id=_as_uuid(event.request_id),
            payload=payload,
            status="pending",
            attempts=0,
        )

        status, error_message, sent_at = "failed", None, None
        max_attempts = max(self.settings.webhook_max_retries, 0) + 1
        attempt = 0
        for attempt in range(1, max_attempts + 1):
            try:
                await self._deliver_webhook(url, payload)
                status, error_message, sent_at = "sent", None, datetime.utcnow()
                break
            except httpx.HTTPError as e:
                logger.warning("Webhook to %s failed (attempt %d/%d): %s", url, attempt, max_attempts, e)
                error_message = str(e)
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.webhook_retry_backoff * attempt)

        self._update_webhook(log_id, status=status, attempts=attempt, error_message=error_message, sent_at=sent_at)
        return str(log_id)

    def _record_webhook(self, **values) -> UUID:
        db = self.session_factory()
        try:
            log = NotificationLog(**values)
            db.add(log)
            db.commit()
            return log.id
        finally:
            db.close()

    def _update_webhook(self, log_id: UUID, **values) -> None:
        db = self.session_factory()
        try:
            db.query(NotificationLog).filter(NotificationLog.id == log_id).update(values)
            db.commit()
        finally:
            db.close()

    async def _deliver_webhook(self, url: str, payload: Dict[str, Any]) -> None:
        """Actually deliver the webhook."""
        headers = {"Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.settings.webhook_timeout, transport=self.transport) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()

    def _build_webhook_payload(
        self,
        event_type: NotificationEventType,
        event: ApprovalEvent,
        content: Dict[str, str],
    ) -> Dict[str, Any]:
        """Build default webhook payload."""
        return {
            "event": event_type.value,
            "timestamp": datetime.utcnow().isoformat(),
            "source": self.settings.app_name,
            "title": content["title"],
            "message": content["message"],
            "data": event.to_dict(),
        }


def _as_uuid(value) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None
