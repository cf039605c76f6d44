"""
Batch Submission Coordinator

Applies a client's batch of approval decisions. Every decision is its own unit
of work on its own database session, so one failing item never rolls back or
blocks the others. Results come back one per decision, in request order.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session, sessionmaker

from content_approval.core.config import get_settings, Settings
from content_approval.core.errors import ApprovalEngineError, ForbiddenError, ValidationError
from content_approval.core.logging import get_logger
from content_approval.core.time_utils import Clock, utc_now
from content_approval.db.database import session_scope
from content_approval.db.models import ApprovalSession, ApprovalStatus
from content_approval.services.approval_decision_store import ApprovalDecisionStore
from content_approval.services.notification_sink import (
    NotificationEvent,
    NotificationSink,
    NotificationType,
    get_notification_sink,
)
from content_approval.services.post_state_machine import PostStateMachine
from content_approval.services.record_resolver import RecordResolver, ResolvedPost

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_FAILED = "failed"


def client_editor_id(client_id: str) -> str:
    """Editor identity recorded for caption edits made through a share link"""
    return f"client:{client_id}"


class DecisionItem:
    """One decision in a batch submission"""

    def __init__(
        self,
        post_id: str,
        post_type: str,
        approval_status: str,
        client_comments: Optional[str] = None,
        edited_caption: Optional[str] = None,
    ):
        self.post_id = post_id
        self.post_type = post_type
        self.approval_status = approval_status
        self.client_comments = client_comments
        self.edited_caption = edited_caption


class ItemResult:
    """Per-decision outcome"""

    def __init__(
        self,
        post_id: str,
        post_type: str,
        outcome: str,
        reason: Optional[str] = None,
        error_code: Optional[str] = None,
        approval_status: Optional[str] = None,
    ):
        self.post_id = post_id
        self.post_type = post_type
        self.outcome = outcome
        self.reason = reason
        self.error_code = error_code
        self.approval_status = approval_status

    @property
    def ok(self) -> bool:
        return self.outcome == OUTCOME_OK

    @classmethod
    def succeeded(cls, item: DecisionItem) -> "ItemResult":
        return cls(item.post_id, item.post_type, OUTCOME_OK, approval_status=item.approval_status)

    @classmethod
    def failed(cls, item: DecisionItem, reason: str, error_code: str) -> "ItemResult":
        return cls(item.post_id, item.post_type, OUTCOME_FAILED, reason=reason, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "post_id": self.post_id,
            "post_type": self.post_type,
            "outcome": self.outcome,
        }
        if self.ok:
            data["approval_status"] = self.approval_status
        else:
            data["reason"] = self.reason
            data["error_code"] = self.error_code
        return data


class BatchResult:
    """Aggregate of a batch; success only when every item succeeded"""

    def __init__(self, results: List[ItemResult]):
        self.results = results

    @property
    def success(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
        }


class _SessionScope:
    """Immutable snapshot of the approval session handed to worker threads"""

    def __init__(self, session: ApprovalSession):
        self.session_id = session.id
        self.client_id = session.client_id
        self.project_id = session.project_id


class BatchSubmissionCoordinator:
    """
    Fans a batch of decisions out to independent units of work.

    Units run in worker threads, at most BATCH_MAX_CONCURRENCY at a time. Each
    unit validates its decision, checks the post is in scope for the session,
    applies any client caption edit, records the decision and mirrors it onto
    the post, all in a single transaction.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        resolver: Optional[RecordResolver] = None,
        state_machine: Optional[PostStateMachine] = None,
        decision_store: Optional[ApprovalDecisionStore] = None,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.resolver = resolver or RecordResolver()
        self.notification_sink = notification_sink or get_notification_sink()
        self.state_machine = state_machine or PostStateMachine(
            resolver=self.resolver,
            notification_sink=self.notification_sink,
            clock=self.clock,
        )
        self.decision_store = decision_store or ApprovalDecisionStore(clock=self.clock)

    async def submit(self, session: ApprovalSession, decisions: List[DecisionItem]) -> BatchResult:
        """Apply every decision and report per-item outcomes in request order"""
        if not decisions:
            raise ValidationError("decisions must contain at least one decision")

        scope = _SessionScope(session)
        semaphore = asyncio.Semaphore(self.settings.batch_max_concurrency)
        started = time.monotonic()

        async def run(item: DecisionItem) -> ItemResult:
            async with semaphore:
                return await asyncio.to_thread(self._process_item, scope, item)

        outcomes = await asyncio.gather(*(run(item) for item in decisions), return_exceptions=True)

        results = []
        for item, outcome in zip(decisions, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Decision worker for post {item.post_id} crashed: {outcome}")
                results.append(ItemResult.failed(item, "Unexpected error while recording decision", "internal_error"))
            else:
                results.append(outcome)

        batch = BatchResult(results)
        logger.info(
            f"Batch of {len(decisions)} decisions for session {scope.session_id}: "
            f"{len(decisions) - batch.failed_count} ok, {batch.failed_count} failed",
            extra={"session_id": scope.session_id, "duration_ms": round((time.monotonic() - started) * 1000, 1)},
        )
        return batch

    def _process_item(self, scope: _SessionScope, item: DecisionItem) -> ItemResult:
        item_logger = get_logger(__name__, session_id=scope.session_id, post_id=item.post_id, post_type=item.post_type)
        try:
            with session_scope(self.session_factory) as db:
                resolved = self._apply_decision(db, scope, item)
        except ApprovalEngineError as e:
            item_logger.info(f"Decision for post {item.post_id} rejected: {e.error_code}: {e.message}")
            return ItemResult.failed(item, e.message, e.error_code)
        except Exception as e:
            item_logger.exception(f"Unexpected error recording decision for post {item.post_id}: {e}")
            return ItemResult.failed(item, "Unexpected error while recording decision", "internal_error")

        self._notify_decision(resolved, scope, item)
        return ItemResult.succeeded(item)

    def _validate_item(self, item: DecisionItem) -> None:
        if not item.post_id:
            raise ValidationError("post_id is required")
        self.decision_store.validate_decision(item.post_type, item.approval_status)
        if item.client_comments is not None and not isinstance(item.client_comments, str):
            raise ValidationError("client_comments must be a string")
        if item.edited_caption is not None and not isinstance(item.edited_caption, str):
            raise ValidationError("edited_caption must be a string")

    def _check_scope(self, db: Session, scope: _SessionScope, resolved: ResolvedPost, item: DecisionItem) -> None:
        post = resolved.post
        if post.client_id != scope.client_id:
            raise ForbiddenError("Post does not belong to this client")
        if scope.project_id is not None and post.project_id != scope.project_id:
            raise ForbiddenError("Post does not belong to this project")
        if scope.project_id is None and post.project_id is not None:
            raise ForbiddenError("Post belongs to a project; use that project's approval link")
        if self.decision_store.get(db, scope.session_id, item.post_id, item.post_type) is None:
            raise ForbiddenError("Post is not part of this approval session")

    def _apply_decision(self, db: Session, scope: _SessionScope, item: DecisionItem) -> ResolvedPost:
        self._validate_item(item)

        resolved = self.resolver.resolve(db, item.post_id, item.post_type)
        self._check_scope(db, scope, resolved, item)
        post = resolved.post

        # Caption edit (and any reapproval reset) lands before the decision
        edited_caption = item.edited_caption
        if edited_caption and edited_caption.strip() and edited_caption != post.caption:
            self.state_machine.apply_edit(
                db,
                resolved,
                {"caption": edited_caption},
                editor_id=client_editor_id(scope.client_id),
                hold_lock=False,
                edit_reason="Edited by client during approval",
                commit=False,
                clear_draft=False,
            )

        self.decision_store.upsert(
            db,
            scope.session_id,
            item.post_id,
            item.post_type,
            item.approval_status,
            comments=item.client_comments,
            commit=False,
        )

        post.approval_status = item.approval_status
        post.needs_attention = item.approval_status == ApprovalStatus.NEEDS_ATTENTION.value
        post.client_feedback = item.client_comments
        if item.approval_status == ApprovalStatus.APPROVED.value:
            post.needs_reapproval = False
        self.resolver.save(db, resolved)
        return resolved

    def _notify_decision(self, resolved: ResolvedPost, scope: _SessionScope, item: DecisionItem) -> None:
        try:
            self.notification_sink.notify(NotificationEvent(
                notification_type=NotificationType.DECISION_RECORDED,
                post_id=item.post_id,
                client_id=scope.client_id,
                project_id=scope.project_id,
                metadata={
                    "session_id": scope.session_id,
                    "post_type": item.post_type,
                    "approval_status": item.approval_status,
                    "partition": resolved.partition.value,
                },
            ))
        except Exception as e:
            logger.error(f"Failed to send decision notification for post {item.post_id}: {e}")


def get_batch_submission_coordinator() -> BatchSubmissionCoordinator:
    """Factory function to get batch submission coordinator instance"""
    return BatchSubmissionCoordinator()
