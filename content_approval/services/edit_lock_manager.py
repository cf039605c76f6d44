"""
Edit Lock Manager

Advisory, timeout-based edit locks stored as fields on the post record
(currently_editing_by / editing_started_at). Expiry is computed at read time,
so there is nothing to sweep.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session

from content_approval.core.config import get_settings, Settings
from content_approval.core.errors import ForbiddenError, LockConflictError
from content_approval.core.time_utils import Clock, as_utc, utc_now
from content_approval.db.models import PARTITION_MODELS, PostRecordMixin
from content_approval.services.record_resolver import RecordResolver, ResolvedPost

logger = logging.getLogger(__name__)


class LockGrant:
    """Outcome of a successful lock check"""

    def __init__(
        self,
        granted: bool,
        locked_by: Optional[str],
        locked_since: Optional[datetime],
        overridden: bool = False,
    ):
        self.granted = granted
        self.locked_by = locked_by
        self.locked_since = locked_since
        self.overridden = overridden


class LockStatus:
    """Read-only view of a post's lock for editors polling the editing session"""

    def __init__(
        self,
        is_active: bool,
        currently_editing_by: Optional[str],
        editing_started_at: Optional[datetime],
        can_edit: bool,
    ):
        self.is_active = is_active
        self.currently_editing_by = currently_editing_by
        self.editing_started_at = editing_started_at
        self.can_edit = can_edit

    def to_dict(self):
        return {
            "isActive": self.is_active,
            "currentlyEditingBy": self.currently_editing_by,
            "editingStartedAt": self.editing_started_at.isoformat() if self.editing_started_at else None,
            "canEdit": self.can_edit,
        }


class EditLockManager:
    """
    Decides whether an editor may mutate a post right now.

    A lock held by a different editor blocks until it is older than the
    configured timeout, or until someone takes it over with force.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        resolver: Optional[RecordResolver] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.resolver = resolver or RecordResolver()

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self.settings.edit_lock_timeout_minutes)

    def is_held(self, post: PostRecordMixin, now: Optional[datetime] = None) -> bool:
        """True while a lock is recorded and younger than the timeout"""
        if not post.currently_editing_by or post.editing_started_at is None:
            return False
        now = as_utc(now or self.clock())
        return now - as_utc(post.editing_started_at) < self.timeout

    def acquire_or_validate(
        self,
        post: PostRecordMixin,
        editor_id: str,
        force: bool = False,
        stamp: bool = True,
    ) -> LockGrant:
        """
        Check (and optionally take) the edit lock for editor_id.

        With stamp=False the lock is only validated; the post's lock fields are
        left as they were. Raises LockConflictError when another editor holds a
        live lock and force is not set.
        """
        now = as_utc(self.clock())
        holder = post.currently_editing_by
        held_since = as_utc(post.editing_started_at)
        overridden = False

        if holder and holder != editor_id and self.is_held(post, now):
            if not force:
                raise LockConflictError(currently_editing_by=holder, editing_started_at=held_since)
            overridden = True
            logger.warning(
                f"Editor {editor_id} forced edit lock on post {post.id} away from {holder}",
                extra={"post_id": post.id, "editor_id": editor_id},
            )

        if not stamp:
            return LockGrant(granted=True, locked_by=holder, locked_since=held_since, overridden=overridden)

        post.currently_editing_by = editor_id
        post.editing_started_at = now
        return LockGrant(granted=True, locked_by=editor_id, locked_since=now, overridden=overridden)

    def claim(
        self,
        db: Session,
        resolved: ResolvedPost,
        editor_id: str,
        force: bool = False,
    ) -> LockGrant:
        """
        Persist a lock grant for editor_id.

        The write is a conditional UPDATE that only matches while the lock
        fields still hold what was read, so two concurrent claimers cannot both
        win. The loser gets a LockConflictError.
        """
        post = resolved.post
        expected_holder = post.currently_editing_by
        expected_since = post.editing_started_at

        grant = self.acquire_or_validate(post, editor_id, force=force, stamp=False)
        now = as_utc(self.clock())

        model = PARTITION_MODELS[resolved.partition]
        query = db.query(model).filter(model.id == post.id)
        if expected_holder is None:
            query = query.filter(model.currently_editing_by.is_(None))
        else:
            query = query.filter(model.currently_editing_by == expected_holder)
            if expected_since is not None:
                query = query.filter(model.editing_started_at == expected_since)

        try:
            updated = query.update(
                {model.currently_editing_by: editor_id, model.editing_started_at: now},
                synchronize_session=False,
            )
            if updated == 0:
                db.rollback()
                db.refresh(post)
                logger.info(f"Lost edit lock race on post {post.id} for editor {editor_id}")
                raise LockConflictError(
                    currently_editing_by=post.currently_editing_by,
                    editing_started_at=as_utc(post.editing_started_at),
                )
            db.commit()
            db.refresh(post)
        except LockConflictError:
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to claim edit lock on post {post.id}: {e}")
            raise

        logger.info(
            f"Edit lock on post {post.id} granted to {editor_id}",
            extra={"post_id": post.id, "editor_id": editor_id},
        )
        return LockGrant(granted=True, locked_by=editor_id, locked_since=now, overridden=grant.overridden)

    def release(
        self,
        db: Session,
        resolved: ResolvedPost,
        editor_id: str,
        force: bool = False,
    ) -> PostRecordMixin:
        """Clear the lock; only its holder may do so unless forced or expired"""
        post = resolved.post
        holder = post.currently_editing_by

        if holder and holder != editor_id and self.is_held(post) and not force:
            raise ForbiddenError(
                "Only the current editor can end this editing session",
                details={"currentlyEditingBy": holder},
            )

        try:
            post.currently_editing_by = None
            post.editing_started_at = None
            self.resolver.save(db, resolved)
            db.commit()
            db.refresh(post)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to release edit lock on post {post.id}: {e}")
            raise

        logger.info(f"Edit lock on post {post.id} released by {editor_id}")
        return post

    def status(self, post: PostRecordMixin, editor_id: Optional[str] = None) -> LockStatus:
        is_active = self.is_held(post)
        holder = post.currently_editing_by if is_active else None
        can_edit = post.is_caption_editable and (not is_active or holder == editor_id)
        return LockStatus(
            is_active=is_active,
            currently_editing_by=holder,
            editing_started_at=as_utc(post.editing_started_at) if is_active else None,
            can_edit=can_edit,
        )


def get_edit_lock_manager() -> EditLockManager:
    """Factory function to get edit lock manager instance"""
    return EditLockManager()
