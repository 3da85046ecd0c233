# Overview: Append-only activity log writes and reads.

from __future__ import annotations

import json

from ..extensions import db
from ..errors import ValidationError
from ..models import ActivityLog
from ..time_utils import parse_iso_datetime
from .pagination import paginate
"""
Activity log invariants (authoritative)

- Append-only: rows are never updated or deleted.
- Entries are written inside the same DB transaction as the change they
  describe. log_activity() flushes but never commits.
"""


def log_activity(
    *,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    details: dict | str | None = None,
) -> ActivityLog:
    if isinstance(details, dict):
        details = json.dumps(details, sort_keys=True, default=str)

    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    user_id: int | None = None,
    start: str | None = None,
    end: str | None = None,
    page: int | None = 1,
    per_page: int | None = 50,
) -> dict:
    q = db.session.query(ActivityLog)
    if action:
        q = q.filter(ActivityLog.action == action.upper())
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(ActivityLog.entity_id == entity_id)
    if user_id is not None:
        q = q.filter(ActivityLog.user_id == user_id)

    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")
    if start_dt is not None:
        q = q.filter(ActivityLog.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(ActivityLog.created_at <= end_dt)

    q = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda e: e.to_dict())
