from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ChangelogAction, OrderChangelog


def log_order_change(
    db: Session,
    *,
    order_id: int,
    user_id: int | None,
    action: ChangelogAction,
    changes: dict | None = None,
    previous_values: dict | None = None,
    notes: str | None = None,
) -> None:
    db.add(
        OrderChangelog(
            order_id=order_id,
            user_id=user_id,
            action=action,
            changes=changes or {},
            previous_values=previous_values or {},
            notes=notes,
        )
    )


def list_order_changelog(db: Session, *, order_id: int) -> list[dict]:
    rows = db.execute(
        select(OrderChangelog)
        .where(OrderChangelog.order_id == order_id)
        .order_by(OrderChangelog.id.asc())
    ).scalars().all()
    return [
        {
            'id': row.id,
            'user_id': row.user_id,
            'action': row.action.value,
            'changes': row.changes,
            'previous_values': row.previous_values,
            'notes': row.notes,
            'created_at': row.created_at,
        }
        for row in rows
    ]
