import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from hodos.core.database import admin_audit, get_db_session
from hodos.core.logging import get_request_id

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system_job"


def record_admin_audit(
    session: Session,
    *,
    actor: str,
    action: str,
    target_user_id: Optional[str] = None,
    target_resource: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record a reviewer or system action in the caller's transaction.

    The audit row commits or rolls back together with the change it describes.
    """
    body = dict(payload or {})
    rid = get_request_id()
    if rid:
        body.setdefault("request_id", rid)
    session.execute(
        insert(admin_audit).values(
            actor=actor,
            action=action,
            target_user_id=target_user_id,
            target_resource=target_resource,
            payload_json=json.dumps(body, default=str) if body else None,
        )
    )


def list_admin_audit(
    *,
    action: Optional[str] = None,
    target_resource: Optional[str] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    query = select(admin_audit).order_by(admin_audit.c.id.desc()).limit(limit)
    if action:
        query = query.where(admin_audit.c.action == action)
    if target_resource:
        query = query.where(admin_audit.c.target_resource == target_resource)

    with get_db_session() as session:
        rows = session.execute(query).fetchall()

    results = []
    for r in rows:
        try:
            payload = json.loads(r.payload_json) if r.payload_json else {}
        except ValueError:
            logger.warning(f"Unreadable audit payload for row {r.id}")
            payload = {}
        results.append({
            "id": r.id,
            "actor": r.actor,
            "action": r.action,
            "target_user_id": r.target_user_id,
            "target_resource": r.target_resource,
            "payload": payload,
            "created_at": r.created_at,
        })
    return results
