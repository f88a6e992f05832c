"""Exactly-once membership facts keyed by (parent, actor).

A ledger wraps a table whose primary key is a (parent_id, actor_id) pair:
attendance rows keyed by (event, user) and vote rows keyed by
(question, voter). Writes go through :meth:`MembershipLedger.insert_if_absent`,
a single ``INSERT ... SELECT ... WHERE`` statement, so the uniqueness check
and any caller-supplied guard are evaluated by the database as part of the
write. Policy (who may join, how many seats) belongs to the callers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, delete, func, insert, literal, select
from sqlalchemy.orm import Session

from .models import Attendee, Vote


class MembershipLedger:
    def __init__(self, model, *, parent: str, actor: str, stamp: str) -> None:
        self.model = model
        self.table = model.__table__
        self.parent = self.table.c[parent]
        self.actor = self.table.c[actor]
        self.stamp = self.table.c[stamp]

    def _pair(self, parent_id: str, actor_id: str):
        return and_(self.parent == parent_id, self.actor == actor_id)

    def count_subquery(self, parent_id: str):
        """Scalar subquery counting rows for ``parent_id``, for use in guards."""
        return (
            select(func.count())
            .select_from(self.table)
            .where(self.parent == parent_id)
            .correlate(None)
            .scalar_subquery()
        )

    def insert_if_absent(
        self,
        session: Session,
        parent_id: str,
        actor_id: str,
        *,
        at: datetime,
        guard=None,
    ) -> bool:
        """Write the (parent, actor) fact unless it exists or ``guard`` is false.

        Returns ``True`` when a row was inserted.
        """
        already_present = (
            select(self.parent)
            .where(self._pair(parent_id, actor_id))
            .correlate(None)
            .exists()
        )
        conditions = [~already_present]
        if guard is not None:
            conditions.append(guard)
        source = select(
            literal(parent_id, self.parent.type),
            literal(actor_id, self.actor.type),
            literal(at, self.stamp.type),
        ).where(*conditions)
        stmt = insert(self.table).from_select(
            [self.parent.name, self.actor.name, self.stamp.name], source
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    def count_for(self, session: Session, parent_id: str) -> int:
        stmt = select(func.count()).select_from(self.table).where(
            self.parent == parent_id
        )
        return session.scalar(stmt) or 0

    def exists_for(self, session: Session, parent_id: str, actor_id: str) -> bool:
        stmt = select(self.parent).where(self._pair(parent_id, actor_id)).limit(1)
        return session.execute(stmt).first() is not None

    def actors_for(self, session: Session, parent_id: str) -> Sequence[str]:
        stmt = (
            select(self.actor)
            .where(self.parent == parent_id)
            .order_by(self.stamp.asc(), self.actor.asc())
        )
        return session.scalars(stmt).all()

    def remove(self, session: Session, parent_id: str, actor_id: str) -> bool:
        result = session.execute(
            delete(self.table).where(self._pair(parent_id, actor_id))
        )
        return result.rowcount == 1

    def remove_all_for(self, session: Session, parent_id: str) -> int:
        result = session.execute(delete(self.table).where(self.parent == parent_id))
        return result.rowcount or 0


attendance = MembershipLedger(
    Attendee, parent="event_id", actor="user_id", stamp="registered_at"
)
votes = MembershipLedger(Vote, parent="question_id", actor="voter_id", stamp="voted_at")
