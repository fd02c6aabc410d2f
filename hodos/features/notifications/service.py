"""
Lifecycle email notifications.

notify() is fire-and-forget: it resolves the recipient, enqueues a delivery
job on an RQ queue with its own retry policy, and never raises. The RQ
worker runs deliver_email(), which renders the template and posts it to the
Resend HTTP API; raising there hands the job back to RQ for retry.

Call notify() only after the caller's transaction has committed.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from redis import Redis
from rq import Queue, Retry
from sqlalchemy import select

from hodos.core.config import settings, retry_intervals
from hodos.core.database import get_db_session, profiles
from hodos.core.logging import log_event
from hodos.features.notifications.templates import render, TEMPLATES


DELIVERY_TIMEOUT_SECONDS = 10
JOB_TIMEOUT = "2m"
RESULT_TTL = 3600

_queue: Optional[Queue] = None


def get_queue() -> Queue:
    """Lazily connect to Redis and return the notification queue."""
    global _queue
    if _queue is None:
        redis_conn = Redis.from_url(settings.REDIS_URL)
        _queue = Queue(settings.NOTIFICATIONS_QUEUE, connection=redis_conn)
    return _queue


def _lookup_recipient(user_id: str) -> Dict[str, Optional[str]]:
    with get_db_session() as session:
        row = session.execute(
            select(profiles.c.email, profiles.c.full_name).where(profiles.c.user_id == user_id)
        ).first()
    if not row:
        return {"email": None, "full_name": None}
    return {"email": row.email, "full_name": row.full_name}


def notify(
    template_key: str,
    recipient_user_id: Optional[str],
    variables: Optional[Dict[str, Any]] = None,
    *,
    email: Optional[str] = None,
) -> bool:
    """
    Enqueue a notification. Returns True if a delivery job was enqueued.

    Never raises: every failure is logged and swallowed so the caller's
    critical path is unaffected.
    """
    if template_key not in TEMPLATES:
        log_event("error", "notification.unknown_template", user_id=recipient_user_id, extra={"template": template_key})
        return False

    if not settings.NOTIFICATIONS_ENABLED:
        log_event(
            "debug",
            "notification.skipped",
            user_id=recipient_user_id,
            event_type=template_key,
            extra={"reason": "disabled"},
        )
        return False

    try:
        payload = dict(variables or {})
        to = email
        if not to or not payload.get("user_name"):
            recipient = _lookup_recipient(recipient_user_id) if recipient_user_id else {}
            to = to or recipient.get("email")
            if not payload.get("user_name"):
                payload["user_name"] = recipient.get("full_name")
        if not to:
            log_event(
                "warning",
                "notification.no_recipient",
                user_id=recipient_user_id,
                event_type=template_key,
            )
            return False

        payload.setdefault("app_url", settings.APP_BASE_URL)
        intervals = retry_intervals()
        get_queue().enqueue(
            deliver_email,
            template_key,
            to,
            payload,
            retry=Retry(max=settings.NOTIFICATION_MAX_RETRIES, interval=intervals),
            job_timeout=JOB_TIMEOUT,
            result_ttl=RESULT_TTL,
        )
    except Exception as e:
        log_event(
            "warning",
            "notification.enqueue_failed",
            user_id=recipient_user_id,
            event_type=template_key,
            error_code="notification_enqueue_failed",
            extra={"error": e},
        )
        return False

    log_event("info", "notification.enqueued", user_id=recipient_user_id, event_type=template_key)
    return True


def deliver_email(template_key: str, to: str, variables: Dict[str, Any]) -> str:
    """
    RQ job: render and send one email through Resend.

    Returns the provider message id. Raises on transport or HTTP errors so
    RQ applies the retry schedule.
    """
    if not settings.RESEND_API_KEY:
        raise RuntimeError("RESEND_API_KEY is not configured")

    subject, body = render(template_key, variables)
    response = httpx.post(
        settings.RESEND_API_URL,
        headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        json={
            "from": settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "text": body,
        },
        timeout=DELIVERY_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    message_id = (response.json() or {}).get("id", "")
    log_event("info", "notification.delivered", event_type=template_key, extra={"message_id": message_id})
    return message_id
