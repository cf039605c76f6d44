"""
Post State Machine

Publish lifecycle and edit rules for posts in every partition: which posts may
be edited, how edits interact with the edit lock, and when an edit sends an
already-approved post back for reapproval.
"""

import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from content_approval.core.errors import InvalidStateError, ValidationError
from content_approval.core.time_utils import Clock, utc_now
from content_approval.db.models import (
    ApprovalStatus,
    FINALIZED_STATUSES,
    Partition,
    PostApproval,
    PostRecordMixin,
    PostRevision,
    PostStatus,
)
from content_approval.services.edit_lock_manager import EditLockManager, LockGrant
from content_approval.services.notification_sink import (
    NotificationEvent,
    NotificationSink,
    NotificationType,
    get_notification_sink,
)
from content_approval.services.record_resolver import RecordResolver, ResolvedPost, post_type_for

logger = logging.getLogger(__name__)

COMMON_EDITABLE_FIELDS = frozenset({"caption", "notes", "image_url"})

PARTITION_EDITABLE_FIELDS = {
    Partition.DRAFTING: COMMON_EDITABLE_FIELDS | {"media_type", "media_alt_text", "tags"},
    Partition.SCHEDULED: COMMON_EDITABLE_FIELDS | {"scheduled_date", "scheduled_time"},
    Partition.UNSCHEDULED: COMMON_EDITABLE_FIELDS,
}


class EditOutcome:
    """Result of an applied edit"""

    def __init__(
        self,
        post: PostRecordMixin,
        changed_fields: List[str],
        needs_reapproval: bool,
        lock: Optional[LockGrant] = None,
        revision: Optional[PostRevision] = None,
    ):
        self.post = post
        self.changed_fields = changed_fields
        self.needs_reapproval = needs_reapproval
        self.lock = lock
        self.revision = revision

    @property
    def changed(self) -> bool:
        return bool(self.changed_fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "post": self.post.to_dict(),
            "changed_fields": self.changed_fields,
            "needs_reapproval": self.needs_reapproval,
            "lock_overridden": bool(self.lock and self.lock.overridden),
            "revision_number": self.revision.revision_number if self.revision else None,
        }


class PostStateMachine:
    """
    Applies edits, deletes and status transitions to resolved posts.

    Every write goes back to the partition the post was resolved from. Methods
    commit by default; pass commit=False to fold the work into a caller-owned
    transaction.
    """

    def __init__(
        self,
        lock_manager: Optional[EditLockManager] = None,
        resolver: Optional[RecordResolver] = None,
        notification_sink: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
    ):
        self.clock = clock or utc_now
        self.resolver = resolver or RecordResolver()
        self.lock_manager = lock_manager or EditLockManager(clock=self.clock, resolver=self.resolver)
        self.notification_sink = notification_sink or get_notification_sink()

    def _ensure_editable(self, post: PostRecordMixin) -> None:
        if post.status in FINALIZED_STATUSES:
            raise InvalidStateError(
                f"Post {post.id} is {post.status} and can no longer be edited",
                details={"status": post.status},
            )

    def _validate_changes(self, resolved: ResolvedPost, changes: Dict[str, Any]) -> None:
        allowed = PARTITION_EDITABLE_FIELDS[resolved.partition]
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValidationError(
                f"Fields not editable on {resolved.partition.value} posts: {', '.join(unknown)}",
                details={"allowed_fields": sorted(allowed)},
            )
        if "caption" in changes and not isinstance(changes["caption"], str):
            raise ValidationError("caption must be a string")

    def apply_edit(
        self,
        db: Session,
        resolved: ResolvedPost,
        changes: Dict[str, Any],
        editor_id: str,
        force: bool = False,
        hold_lock: bool = True,
        edit_reason: Optional[str] = None,
        commit: bool = True,
        clear_draft: bool = True,
    ) -> EditOutcome:
        """
        Apply field changes on behalf of editor_id.

        Order matters: finalized posts are rejected before the lock is looked
        at, and the lock must resolve before anything is written. A caption
        change on an approved post resets it to pending and flags it for
        reapproval. With hold_lock=False the lock is validated but not taken.
        With clear_draft=False any parked draft_changes are left in place.
        """
        post = resolved.post
        self._ensure_editable(post)
        self._validate_changes(resolved, changes)

        lock = self.lock_manager.acquire_or_validate(post, editor_id, force=force, stamp=hold_lock)

        now = self.clock()
        previous_caption = post.caption or ""
        changed_fields = []
        for field_name, value in changes.items():
            if getattr(post, field_name) != value:
                setattr(post, field_name, value)
                changed_fields.append(field_name)

        caption_changed = "caption" in changed_fields
        reapproval_triggered = False
        if caption_changed and post.approval_status == ApprovalStatus.APPROVED.value:
            post.needs_reapproval = True
            post.approval_status = ApprovalStatus.PENDING.value
            post.reapproval_notified_at = None
            reapproval_triggered = True

        revision = None
        try:
            if changed_fields:
                post.edit_count = (post.edit_count or 0) + 1
                post.last_edited_by = editor_id
                post.last_edited_at = now
                if edit_reason is not None:
                    post.edit_reason = edit_reason
            if clear_draft:
                post.draft_changes = None

            self.resolver.save(db, resolved)

            if caption_changed:
                revision = self._record_revision(db, resolved, editor_id, previous_caption, edit_reason)

            if commit:
                db.commit()
                db.refresh(post)
        except Exception as e:
            if commit:
                db.rollback()
            logger.error(f"Failed to apply edit to post {post.id}: {e}")
            raise

        if changed_fields:
            logger.info(
                f"Post {post.id} edited by {editor_id}: {', '.join(changed_fields)}",
                extra={"post_id": post.id, "editor_id": editor_id},
            )

        if reapproval_triggered:
            self._notify_reapproval(post, editor_id)

        return EditOutcome(
            post=post,
            changed_fields=changed_fields,
            needs_reapproval=bool(post.needs_reapproval),
            lock=lock,
            revision=revision,
        )

    def save_draft(
        self,
        db: Session,
        resolved: ResolvedPost,
        changes: Dict[str, Any],
        editor_id: str,
        force: bool = False,
    ) -> PostRecordMixin:
        """Park pending changes in draft_changes without publishing them to the post"""
        post = resolved.post
        self._ensure_editable(post)
        self._validate_changes(resolved, changes)
        self.lock_manager.acquire_or_validate(post, editor_id, force=force, stamp=True)

        try:
            merged = dict(post.draft_changes or {})
            merged.update(changes)
            post.draft_changes = merged
            self.resolver.save(db, resolved)
            db.commit()
            db.refresh(post)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save draft changes for post {post.id}: {e}")
            raise

        logger.info(f"Draft changes saved for post {post.id} by {editor_id}")
        return post

    def delete(self, db: Session, resolved: ResolvedPost, editor_id: Optional[str] = None) -> None:
        """Hard-delete a post with its revisions and approval decisions; published posts must be archived instead"""
        post = resolved.post
        if post.status == PostStatus.PUBLISHED.value:
            raise InvalidStateError(
                "Cannot delete published posts. Archive them instead.",
                details={"status": post.status},
            )

        try:
            db.query(PostRevision).filter(
                PostRevision.post_id == post.id,
                PostRevision.partition == resolved.partition.value,
            ).delete(synchronize_session=False)
            db.query(PostApproval).filter(
                PostApproval.post_id == post.id,
                PostApproval.post_type == post_type_for(resolved.partition).value,
            ).delete(synchronize_session=False)
            db.delete(post)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete post {post.id}: {e}")
            raise

        logger.info(f"Post {post.id} deleted from {resolved.partition.value} by {editor_id or 'unknown'}")

    def transition(
        self,
        db: Session,
        resolved: ResolvedPost,
        new_status: str,
        editor_id: Optional[str] = None,
    ) -> PostRecordMixin:
        """Move a drafting post along its publish lifecycle"""
        post = resolved.post
        if resolved.partition != Partition.DRAFTING:
            raise InvalidStateError(f"Calendar post {post.id} has no publish lifecycle")

        try:
            PostStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Unknown status '{new_status}'",
                details={"allowed": [s.value for s in PostStatus]},
            )

        old_status = post.status
        if not post.can_transition_to(new_status):
            raise InvalidStateError(
                f"Cannot transition post {post.id} from {old_status} to {new_status}",
                details={"status": old_status},
            )

        try:
            post.status_value = new_status
            self.resolver.save(db, resolved)
            db.commit()
            db.refresh(post)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to transition post {post.id}: {e}")
            raise

        logger.info(f"Post {post.id} status {old_status} -> {new_status} by {editor_id or 'unknown'}")
        return post

    def list_revisions(
        self,
        db: Session,
        resolved: ResolvedPost,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PostRevision]:
        """Caption history, newest first"""
        return db.query(PostRevision).filter(
            PostRevision.post_id == resolved.post_id,
            PostRevision.partition == resolved.partition.value,
        ).order_by(PostRevision.revision_number.desc()).offset(offset).limit(limit).all()

    def _record_revision(
        self,
        db: Session,
        resolved: ResolvedPost,
        editor_id: str,
        previous_caption: str,
        edit_reason: Optional[str],
    ) -> PostRevision:
        post = resolved.post
        last_number = db.query(func.max(PostRevision.revision_number)).filter(
            PostRevision.post_id == post.id,
            PostRevision.partition == resolved.partition.value,
        ).scalar()

        revision = PostRevision(
            post_id=post.id,
            partition=resolved.partition.value,
            revision_number=(last_number or 0) + 1,
            edited_by=editor_id,
            edited_at=self.clock(),
            previous_caption=previous_caption,
            new_caption=post.caption or "",
            edit_reason=edit_reason,
        )
        db.add(revision)
        db.flush()
        return revision

    def _notify_reapproval(self, post: PostRecordMixin, editor_id: str) -> None:
        try:
            self.notification_sink.notify(NotificationEvent(
                notification_type=NotificationType.REAPPROVAL_REQUIRED,
                post_id=post.id,
                client_id=post.client_id,
                project_id=post.project_id,
                metadata={"edited_by": editor_id},
            ))
        except Exception as e:
            logger.error(f"Failed to send reapproval notification for post {post.id}: {e}")


def get_post_state_machine() -> PostStateMachine:
    """Factory function to get post state machine instance"""
    return PostStateMachine()
