from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON, Date, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from enum import Enum
from typing import Dict, Any, Optional
import uuid

from content_approval.db.database import Base
from content_approval.core.time_utils import as_utc, isoformat_or_none


class Partition(str, Enum):
    """Backing store a post lives in, by lifecycle stage"""
    DRAFTING = "drafting"
    SCHEDULED = "scheduled"
    UNSCHEDULED = "unscheduled"


class PostType(str, Enum):
    """Decision-record discriminator for which store a post_id refers to"""
    SCHEDULED = "scheduled"
    PLANNER_SCHEDULED = "planner_scheduled"


class PostStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_ATTENTION = "needs_attention"


EDITABLE_STATUSES = frozenset({PostStatus.DRAFT.value, PostStatus.READY.value, PostStatus.SCHEDULED.value})
FINALIZED_STATUSES = frozenset({PostStatus.PUBLISHED.value, PostStatus.ARCHIVED.value, PostStatus.DELETED.value})

# Public decision vocabulary; "pending" is only ever the seeded default
DECISION_STATUSES = frozenset({
    ApprovalStatus.APPROVED.value,
    ApprovalStatus.REJECTED.value,
    ApprovalStatus.NEEDS_ATTENTION.value,
})


def _new_id() -> str:
    return str(uuid.uuid4())


class PostRecordMixin:
    """
    Shared accessor surface for the three post partitions.

    Drafting, calendar-scheduled and calendar-unscheduled posts are variants of
    one logical post; resolver and state machine work against these columns
    only and dispatch on ``partition``.
    """

    partition = None  # set by each partition class

    id = Column(String, primary_key=True, default=_new_id)
    client_id = Column(String, nullable=False, index=True)
    project_id = Column(String, nullable=True, index=True)

    caption = Column(Text, nullable=False, default="")
    image_url = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Approval workflow
    approval_status = Column(String(50), nullable=False, default=ApprovalStatus.PENDING.value)
    needs_reapproval = Column(Boolean, nullable=False, default=False)
    needs_attention = Column(Boolean, nullable=False, default=False)
    client_feedback = Column(Text, nullable=True)
    reapproval_notified_at = Column(DateTime(timezone=True), nullable=True)

    # Edit tracking
    edit_count = Column(Integer, nullable=False, default=0)
    last_edited_by = Column(String, nullable=True)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)
    edit_reason = Column(Text, nullable=True)
    draft_changes = Column(JSON, nullable=True)

    # Advisory edit lock
    currently_editing_by = Column(String, nullable=True)
    editing_started_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def status(self) -> Optional[str]:
        """Calendar partitions carry no restrictive status"""
        return None

    @property
    def post_type(self) -> PostType:
        if self.partition == Partition.DRAFTING:
            return PostType.SCHEDULED
        return PostType.PLANNER_SCHEDULED

    @property
    def is_caption_editable(self) -> bool:
        return self.status is None or self.status in EDITABLE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert post to dictionary for API responses"""
        return {
            "id": self.id,
            "partition": self.partition.value,
            "post_type": self.post_type.value,
            "client_id": self.client_id,
            "project_id": self.project_id,
            "caption": self.caption,
            "image_url": self.image_url,
            "notes": self.notes,
            "status": self.status,
            "approval_status": self.approval_status,
            "needs_reapproval": bool(self.needs_reapproval),
            "needs_attention": bool(self.needs_attention),
            "client_feedback": self.client_feedback,
            "edit_count": self.edit_count or 0,
            "last_edited_by": self.last_edited_by,
            "last_edited_at": isoformat_or_none(self.last_edited_at),
            "edit_reason": self.edit_reason,
            "draft_changes": self.draft_changes or {},
            "currently_editing_by": self.currently_editing_by,
            "editing_started_at": isoformat_or_none(self.editing_started_at),
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }


class DraftingPost(PostRecordMixin, Base):
    """Post being authored; the only partition with a publish lifecycle"""
    __tablename__ = "posts"

    partition = Partition.DRAFTING

    status_value = Column("status", String(20), nullable=False, default=PostStatus.DRAFT.value, index=True)
    media_type = Column(String(50), nullable=True)
    media_alt_text = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_posts_client_status', 'client_id', 'status'),
        Index('ix_posts_approval_status', 'approval_status'),
    )

    @property
    def status(self) -> Optional[str]:
        return self.status_value

    def can_transition_to(self, new_status: str) -> bool:
        """Validate status transitions for the publish lifecycle"""
        return new_status in POST_STATUS_TRANSITIONS.get(self.status_value, [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "media_type": self.media_type,
            "media_alt_text": self.media_alt_text,
            "tags": self.tags or [],
        })
        return data

    def __repr__(self):
        return f"<DraftingPost(id={self.id}, client={self.client_id}, status={self.status_value})>"


class CalendarScheduledPost(PostRecordMixin, Base):
    """Post placed on a project calendar"""
    __tablename__ = "calendar_scheduled_posts"

    partition = Partition.SCHEDULED

    scheduled_date = Column(Date, nullable=True, index=True)
    scheduled_time = Column(String(8), nullable=True)  # HH:MM[:SS]

    __table_args__ = (
        Index('ix_calendar_scheduled_client_project', 'client_id', 'project_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "scheduled_time": self.scheduled_time,
        })
        return data

    def __repr__(self):
        return f"<CalendarScheduledPost(id={self.id}, client={self.client_id}, date={self.scheduled_date})>"


class CalendarUnscheduledPost(PostRecordMixin, Base):
    """Backlog post not yet placed on the calendar"""
    __tablename__ = "calendar_unscheduled_posts"

    partition = Partition.UNSCHEDULED

    __table_args__ = (
        Index('ix_calendar_unscheduled_client_project', 'client_id', 'project_id'),
    )

    def __repr__(self):
        return f"<CalendarUnscheduledPost(id={self.id}, client={self.client_id})>"


PARTITION_MODELS = {
    Partition.DRAFTING: DraftingPost,
    Partition.SCHEDULED: CalendarScheduledPost,
    Partition.UNSCHEDULED: CalendarUnscheduledPost,
}

POST_STATUS_TRANSITIONS = {
    PostStatus.DRAFT.value: [PostStatus.READY.value, PostStatus.ARCHIVED.value, PostStatus.DELETED.value],
    PostStatus.READY.value: [PostStatus.DRAFT.value, PostStatus.SCHEDULED.value, PostStatus.ARCHIVED.value, PostStatus.DELETED.value],
    PostStatus.SCHEDULED.value: [PostStatus.READY.value, PostStatus.PUBLISHED.value, PostStatus.ARCHIVED.value, PostStatus.DELETED.value],
    PostStatus.PUBLISHED.value: [PostStatus.ARCHIVED.value, PostStatus.DELETED.value],
    PostStatus.ARCHIVED.value: [PostStatus.DRAFT.value, PostStatus.DELETED.value],
    PostStatus.DELETED.value: [],  # Terminal state
}


class ApprovalSession(Base):
    """
    Client-facing approval session reachable through an anonymous share link.

    The share token is the capability: holding a valid, unexpired token is the
    whole authorization for the public approval flow.
    """
    __tablename__ = "client_approval_sessions"

    id = Column(String, primary_key=True, default=_new_id)
    share_token = Column(String(128), nullable=False, unique=True, index=True)
    client_id = Column(String, nullable=False, index=True)
    project_id = Column(String, nullable=True, index=True)  # NULL: ad-hoc session for posts without a project
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    approvals = relationship("PostApproval", back_populates="session", cascade="all, delete-orphan")

    def is_expired(self, now) -> bool:
        return as_utc(now) >= as_utc(self.expires_at)

    def to_dict(self, include_token: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "project_id": self.project_id,
            "expires_at": isoformat_or_none(self.expires_at),
            "created_at": isoformat_or_none(self.created_at),
        }
        if include_token:
            data["share_token"] = self.share_token
        return data

    def __repr__(self):
        return f"<ApprovalSession(id={self.id}, client={self.client_id}, project={self.project_id})>"


class PostApproval(Base):
    """One client decision per (session, post, post_type)"""
    __tablename__ = "post_approvals"

    id = Column(String, primary_key=True, default=_new_id)
    session_id = Column(String, ForeignKey("client_approval_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    post_id = Column(String, nullable=False)
    post_type = Column(String(50), nullable=False)
    approval_status = Column(String(50), nullable=False, default=ApprovalStatus.PENDING.value)
    client_comments = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    session = relationship("ApprovalSession", back_populates="approvals")

    __table_args__ = (
        UniqueConstraint('session_id', 'post_id', 'post_type', name='uq_post_approvals_session_post_type'),
        Index('ix_post_approvals_post_id_type', 'post_id', 'post_type'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "post_id": self.post_id,
            "post_type": self.post_type,
            "approval_status": self.approval_status,
            "client_comments": self.client_comments,
            "approved_at": isoformat_or_none(self.approved_at),
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }

    def __repr__(self):
        return f"<PostApproval(session={self.session_id}, post={self.post_id}, type={self.post_type}, status={self.approval_status})>"


class PostRevision(Base):
    """Caption history, one row per caption-changing edit"""
    __tablename__ = "post_revisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(String, nullable=False)
    partition = Column(String(20), nullable=False)
    revision_number = Column(Integer, nullable=False)
    edited_by = Column(String, nullable=False)
    edited_at = Column(DateTime(timezone=True), nullable=False)
    previous_caption = Column(Text, nullable=False)
    new_caption = Column(Text, nullable=False)
    edit_reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('post_id', 'partition', 'revision_number', name='uq_post_revisions_number'),
        Index('ix_post_revisions_post', 'post_id', 'partition'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "partition": self.partition,
            "revision_number": self.revision_number,
            "edited_by": self.edited_by,
            "edited_at": isoformat_or_none(self.edited_at),
            "previous_caption": self.previous_caption,
            "new_caption": self.new_caption,
            "edit_reason": self.edit_reason,
        }
