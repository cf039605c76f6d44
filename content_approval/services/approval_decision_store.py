"""
Approval Decision Store

One decision row per (session, post, post_type). Writes are upserts so
repeated or concurrent submissions converge on a single row.
"""

import logging
import uuid
from typing import List, Optional
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from content_approval.core.errors import ValidationError
from content_approval.core.time_utils import Clock, utc_now
from content_approval.db.models import (
    ApprovalStatus,
    DECISION_STATUSES,
    PostApproval,
    PostType,
)

logger = logging.getLogger(__name__)

CONFLICT_KEY = ["session_id", "post_id", "post_type"]

_DIALECT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class ApprovalDecisionStore:
    """Persists client decisions keyed by (session_id, post_id, post_type)"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    @staticmethod
    def validate_decision(post_type: str, status: str) -> None:
        if status not in DECISION_STATUSES:
            raise ValidationError(
                f"Invalid approval status '{status}'",
                details={"allowed": sorted(DECISION_STATUSES)},
            )
        try:
            PostType(post_type)
        except ValueError:
            raise ValidationError(
                f"Invalid post_type '{post_type}'",
                details={"allowed": [t.value for t in PostType]},
            )

    def upsert(
        self,
        db: Session,
        session_id: str,
        post_id: str,
        post_type: str,
        status: str,
        comments: Optional[str] = None,
        commit: bool = True,
    ) -> PostApproval:
        """
        Record a decision, replacing any earlier one for the same key.

        approved_at is recomputed on every write: set when the decision is
        approved, cleared otherwise.
        """
        post_type = PostType(post_type).value if isinstance(post_type, PostType) else post_type
        self.validate_decision(post_type, status)

        now = self.clock()
        values = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "post_id": post_id,
            "post_type": post_type,
            "approval_status": status,
            "client_comments": comments,
            "approved_at": now if status == ApprovalStatus.APPROVED.value else None,
            "created_at": now,
            "updated_at": now,
        }

        try:
            insert = _DIALECT_INSERTS.get(db.get_bind().dialect.name)
            if insert is not None:
                stmt = insert(PostApproval).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=CONFLICT_KEY,
                    set_={
                        "approval_status": stmt.excluded.approval_status,
                        "client_comments": stmt.excluded.client_comments,
                        "approved_at": stmt.excluded.approved_at,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                db.execute(stmt)
            else:
                self._insert_or_update(db, values)

            if commit:
                db.commit()
            else:
                db.flush()
        except Exception as e:
            if commit:
                db.rollback()
            logger.error(f"Failed to upsert decision for post {post_id} in session {session_id}: {e}")
            raise

        logger.info(
            f"Decision {status} recorded for post {post_id} ({post_type})",
            extra={"session_id": session_id, "post_id": post_id, "post_type": post_type},
        )
        return self.get(db, session_id, post_id, post_type)

    def _insert_or_update(self, db: Session, values: dict) -> None:
        """Portable upsert for dialects without ON CONFLICT support"""
        existing = self.get(db, values["session_id"], values["post_id"], values["post_type"])
        if existing is None:
            try:
                with db.begin_nested():
                    db.add(PostApproval(**values))
                return
            except IntegrityError:
                logger.info(f"Concurrent insert for post {values['post_id']}, updating instead")
                existing = self.get(db, values["session_id"], values["post_id"], values["post_type"])

        existing.approval_status = values["approval_status"]
        existing.client_comments = values["client_comments"]
        existing.approved_at = values["approved_at"]
        existing.updated_at = values["updated_at"]
        db.flush()

    def seed_pending(
        self,
        db: Session,
        session_id: str,
        post_id: str,
        post_type: str,
    ) -> None:
        """Insert a pending row unless a decision already exists; caller commits"""
        post_type = PostType(post_type).value
        now = self.clock()
        values = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "post_id": post_id,
            "post_type": post_type,
            "approval_status": ApprovalStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }

        insert = _DIALECT_INSERTS.get(db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(PostApproval).values(**values).on_conflict_do_nothing(index_elements=CONFLICT_KEY)
            db.execute(stmt)
            return

        if self.get(db, session_id, post_id, post_type) is None:
            db.add(PostApproval(**values))
            db.flush()

    def get(
        self,
        db: Session,
        session_id: str,
        post_id: str,
        post_type: str,
    ) -> Optional[PostApproval]:
        return db.query(PostApproval).populate_existing().filter(
            PostApproval.session_id == session_id,
            PostApproval.post_id == post_id,
            PostApproval.post_type == post_type,
        ).first()

    def list_for_session(self, db: Session, session_id: str) -> List[PostApproval]:
        return db.query(PostApproval).populate_existing().filter(
            PostApproval.session_id == session_id
        ).order_by(PostApproval.created_at, PostApproval.post_id).all()


def get_approval_decision_store() -> ApprovalDecisionStore:
    """Factory function to get approval decision store instance"""
    return ApprovalDecisionStore()
