"""
Approval Session Manager

Mints share-link approval sessions for a client (and optionally a project),
pre-seeds a pending decision for every selected post, and validates tokens on
every read. The share token is the only credential on the public path.
"""

import logging
import secrets
import uuid
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from content_approval.core.config import get_settings, Settings
from content_approval.core.errors import ExpiredError, NotFoundError, ValidationError
from content_approval.core.logging import token_preview
from content_approval.core.time_utils import Clock, isoformat_or_none, utc_now
from content_approval.db.models import ApprovalSession, PostApproval
from content_approval.services.approval_decision_store import ApprovalDecisionStore
from content_approval.services.record_resolver import RecordResolver, ResolvedPost

logger = logging.getLogger(__name__)

UNSCHEDULED_WEEK_LABEL = "Unscheduled"


class CreatedSession:
    """A freshly minted session plus what happened to each selected id"""

    def __init__(
        self,
        session: ApprovalSession,
        share_url: str,
        seeded: List[Dict[str, str]],
        skipped_post_ids: List[str],
    ):
        self.session = session
        self.share_url = share_url
        self.seeded = seeded
        self.skipped_post_ids = skipped_post_ids


class EligiblePost:
    """Post visible through a session, with its current decision"""

    def __init__(self, resolved: ResolvedPost, decision: PostApproval):
        self.resolved = resolved
        self.decision = decision

    @property
    def post(self):
        return self.resolved.post

    @property
    def scheduled_date(self) -> Optional[date]:
        return getattr(self.resolved.post, "scheduled_date", None)

    def to_dict(self) -> Dict[str, Any]:
        data = self.post.to_dict()
        data["post_type"] = self.decision.post_type
        data["approval"] = {
            "approval_status": self.decision.approval_status,
            "client_comments": self.decision.client_comments,
            "approved_at": isoformat_or_none(self.decision.approved_at),
        }
        return data


class WeekGroup:
    """Eligible posts falling in one Monday-start week"""

    def __init__(self, week_start: Optional[date], posts: List[EligiblePost]):
        self.week_start = week_start
        self.posts = posts

    @property
    def label(self) -> str:
        if self.week_start is None:
            return UNSCHEDULED_WEEK_LABEL
        return f"W/C {self.week_start.day} {self.week_start.strftime('%B')}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "week_start": self.week_start.isoformat() if self.week_start else None,
            "posts": [p.to_dict() for p in self.posts],
        }


def week_start_for(day: date) -> date:
    """Monday of the week containing day"""
    return day - timedelta(days=day.weekday())


def group_by_week(posts: List[EligiblePost]) -> List[WeekGroup]:
    """
    Group posts by the Monday-start week of their scheduled date.

    Weeks come out in calendar order; posts without a date land in a trailing
    "Unscheduled" group.
    """
    weeks: Dict[date, List[EligiblePost]] = {}
    undated: List[EligiblePost] = []

    for entry in posts:
        if entry.scheduled_date is None:
            undated.append(entry)
        else:
            weeks.setdefault(week_start_for(entry.scheduled_date), []).append(entry)

    groups = []
    for week_start in sorted(weeks):
        entries = sorted(
            weeks[week_start],
            key=lambda e: (e.scheduled_date, getattr(e.post, "scheduled_time", None) or ""),
        )
        groups.append(WeekGroup(week_start, entries))

    if undated:
        groups.append(WeekGroup(None, undated))
    return groups


class ApprovalSessionService:
    """Creates, validates and lists client approval sessions"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        resolver: Optional[RecordResolver] = None,
        decision_store: Optional[ApprovalDecisionStore] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.resolver = resolver or RecordResolver()
        self.decision_store = decision_store or ApprovalDecisionStore(clock=self.clock)

    def share_url(self, token: str) -> str:
        return f"{self.settings.share_base_url}/approval/{token}"

    def create(
        self,
        db: Session,
        client_id: str,
        project_id: Optional[str],
        selected_post_ids: List[str],
        ttl_days: Optional[int] = None,
    ) -> CreatedSession:
        """
        Create a session and seed a pending decision per selected post.

        Ids that cannot be resolved, or that belong to a different client or
        project, are logged and skipped; the session is still created.
        """
        if not client_id:
            raise ValidationError("client_id is required")
        if not selected_post_ids:
            raise ValidationError("selected_post_ids must contain at least one post id")

        ttl_days = self.settings.approval_session_ttl_days if ttl_days is None else ttl_days
        max_ttl = self.settings.approval_session_max_ttl_days
        if ttl_days < 1 or ttl_days > max_ttl:
            raise ValidationError(
                f"ttl_days must be between 1 and {max_ttl}",
                details={"ttl_days": ttl_days},
            )

        # Preserve caller order, drop duplicates
        post_ids = list(dict.fromkeys(selected_post_ids))

        now = self.clock()
        session = ApprovalSession(
            id=str(uuid.uuid4()),
            share_token=secrets.token_urlsafe(self.settings.share_token_bytes),
            client_id=client_id,
            project_id=project_id,
            expires_at=now + timedelta(days=ttl_days),
            created_at=now,
        )

        seeded = []
        skipped = []
        try:
            db.add(session)
            db.flush()

            for post_id in post_ids:
                try:
                    resolved = self.resolver.resolve(db, post_id)
                except NotFoundError:
                    logger.warning(f"Skipping unknown post {post_id} for approval session {session.id}")
                    skipped.append(post_id)
                    continue

                post = resolved.post
                # A session without a project only covers posts without one
                if post.client_id != client_id or post.project_id != project_id:
                    logger.warning(
                        f"Skipping post {post_id} outside client/project scope of approval session {session.id}"
                    )
                    skipped.append(post_id)
                    continue

                self.decision_store.seed_pending(db, session.id, post_id, resolved.post_type.value)
                seeded.append({"post_id": post_id, "post_type": resolved.post_type.value})

            db.commit()
            db.refresh(session)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to create approval session for client {client_id}: {e}")
            raise

        logger.info(
            f"Approval session {session.id} created for client {client_id} "
            f"(token {token_preview(session.share_token)}, {len(seeded)} posts, {len(skipped)} skipped)",
            extra={"session_id": session.id, "client_id": client_id},
        )

        return CreatedSession(
            session=session,
            share_url=self.share_url(session.share_token),
            seeded=seeded,
            skipped_post_ids=skipped,
        )

    def _ensure_active(self, session: ApprovalSession) -> ApprovalSession:
        if session.is_expired(self.clock()):
            raise ExpiredError(
                "Approval session has expired",
                details={"expired_at": isoformat_or_none(session.expires_at)},
            )
        return session

    def validate(self, db: Session, token: str) -> ApprovalSession:
        """Look up a session by share token, rejecting unknown and expired tokens"""
        if not token:
            raise NotFoundError("Approval session not found")

        session = db.query(ApprovalSession).filter(ApprovalSession.share_token == token).first()
        if session is None:
            logger.info(f"Unknown approval token {token_preview(token)}")
            raise NotFoundError("Approval session not found")

        return self._ensure_active(session)

    def get(self, db: Session, session_id: str, allow_expired: bool = False) -> ApprovalSession:
        session = db.query(ApprovalSession).filter(ApprovalSession.id == session_id).first()
        if session is None:
            raise NotFoundError(f"Approval session {session_id} not found")
        if allow_expired:
            return session
        return self._ensure_active(session)

    def list_for_project(self, db: Session, project_id: str) -> List[ApprovalSession]:
        return db.query(ApprovalSession).filter(
            ApprovalSession.project_id == project_id
        ).order_by(ApprovalSession.created_at.desc()).all()

    def is_expired(self, session: ApprovalSession) -> bool:
        return session.is_expired(self.clock())

    def list_eligible_posts(
        self,
        db: Session,
        session: ApprovalSession,
        allow_expired: bool = False,
    ) -> List[EligiblePost]:
        """
        Posts seeded into this session that still exist, each with its decision

        The share-link path always checks expiry; the agency-side board passes
        allow_expired=True so decisions stay visible after the link lapses.
        """
        if not allow_expired:
            self._ensure_active(session)

        decisions = {
            (d.post_id, d.post_type): d
            for d in self.decision_store.list_for_session(db, session.id)
        }
        resolved_posts = self.resolver.resolve_many(db, list(decisions))

        return [
            EligiblePost(resolved, decisions[(resolved.post_id, resolved.post_type.value)])
            for resolved in resolved_posts
        ]

    def group_by_week(self, posts: List[EligiblePost]) -> List[WeekGroup]:
        return group_by_week(posts)


def get_approval_session_service() -> ApprovalSessionService:
    """Factory function to get approval session service instance"""
    return ApprovalSessionService()
