"""
Approval Sessions API

Internal endpoints for minting and listing client approval sessions, plus the
public share-link endpoints a client uses to review posts and submit
decisions. On the public path the share token is the only credential.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field

from content_approval.db.database import get_db
from content_approval.core.errors import ApprovalEngineError
from content_approval.core.logging import token_preview
from content_approval.core.time_utils import isoformat_or_none
from content_approval.db.models import ApprovalSession
from content_approval.services.approval_session_service import (
    ApprovalSessionService,
    get_approval_session_service,
)
from content_approval.services.batch_submission_coordinator import (
    BatchSubmissionCoordinator,
    DecisionItem,
    get_batch_submission_coordinator,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/approval-sessions", tags=["Approval Sessions"])


# Request/Response Models

class ApprovalSessionCreateRequest(BaseModel):
    """Request to create a share-link approval session"""
    model_config = ConfigDict(from_attributes=True)

    client_id: str = Field(..., description="Client the session is scoped to")
    project_id: Optional[str] = Field(None, description="Project scope; omit for posts without a project")
    selected_post_ids: List[str] = Field(default_factory=list, description="Posts to put up for approval")
    ttl_days: Optional[int] = Field(None, description="Days until the share link expires")


class ApprovalSessionResponse(BaseModel):
    """Approval session details"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    project_id: Optional[str]
    expires_at: str
    created_at: Optional[str]
    share_url: Optional[str] = None
    is_expired: Optional[bool] = None


class ApprovalSessionCreateResponse(BaseModel):
    """Newly created session with the share link to hand to the client"""

    session: ApprovalSessionResponse
    share_token: str
    share_url: str
    seeded_posts: List[Dict[str, str]]
    skipped_post_ids: List[str]


class DecisionRequest(BaseModel):
    """Single client decision"""

    post_id: str = Field(..., description="Post being decided on")
    post_type: str = Field(..., description="scheduled or planner_scheduled")
    approval_status: str = Field(..., description="approved, rejected or needs_attention")
    client_comments: Optional[str] = Field(None, description="Feedback for the agency")
    edited_caption: Optional[str] = Field(None, description="Caption as edited by the client")


class BatchSubmissionRequest(BaseModel):
    """Batch of decisions submitted through a share link"""

    share_token: str = Field(..., description="Approval session share token")
    decisions: List[DecisionRequest] = Field(default_factory=list)


class DecisionResultResponse(BaseModel):
    post_id: str
    post_type: str
    outcome: str
    approval_status: Optional[str] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None


class BatchSubmissionResponse(BaseModel):
    success: bool
    results: List[DecisionResultResponse]


def _session_response(
    session: ApprovalSession,
    service: ApprovalSessionService,
    include_link: bool = True,
) -> ApprovalSessionResponse:
    return ApprovalSessionResponse(
        id=session.id,
        client_id=session.client_id,
        project_id=session.project_id,
        expires_at=isoformat_or_none(session.expires_at),
        created_at=isoformat_or_none(session.created_at),
        share_url=service.share_url(session.share_token) if include_link else None,
        is_expired=service.is_expired(session),
    )


def _raise_http(e: ApprovalEngineError):
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


# API Endpoints

@router.post("", response_model=ApprovalSessionCreateResponse)
async def create_approval_session(
    request: ApprovalSessionCreateRequest,
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
):
    """
    Create an approval session for a client (and optionally a project)

    Every selected post gets a pending decision. Posts that cannot be found or
    fall outside the client/project scope are reported in skipped_post_ids.
    """
    try:
        created = service.create(
            db,
            client_id=request.client_id,
            project_id=request.project_id,
            selected_post_ids=request.selected_post_ids,
            ttl_days=request.ttl_days,
        )

        return ApprovalSessionCreateResponse(
            session=_session_response(created.session, service),
            share_token=created.session.share_token,
            share_url=created.share_url,
            seeded_posts=created.seeded,
            skipped_post_ids=created.skipped_post_ids,
        )

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating approval session: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("", response_model=List[ApprovalSessionResponse])
async def list_approval_sessions(
    project_id: str = Query(..., description="Project to list sessions for"),
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
):
    """List a project's approval sessions, newest first, including expired ones"""
    try:
        sessions = service.list_for_project(db, project_id)
        return [_session_response(s, service) for s in sessions]

    except Exception as e:
        logger.error(f"Error listing approval sessions for project {project_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/by-token")
async def get_posts_by_token(
    token: str = Query(..., description="Share token from the approval link"),
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
) -> Dict[str, Any]:
    """
    Public: validate a share token and list the session's posts

    Posts are returned flat and grouped into Monday-start weeks. Unknown tokens
    get 404, expired ones 410.
    """
    try:
        session = service.validate(db, token)
        eligible = service.list_eligible_posts(db, session)
        weeks = service.group_by_week(eligible)

        return {
            "session": _session_response(session, service, include_link=False).model_dump(),
            "posts": [entry.to_dict() for entry in eligible],
            "weeks": [week.to_dict() for week in weeks],
        }

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading approval posts for token {token_preview(token)}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/submit", response_model=BatchSubmissionResponse)
async def submit_decisions(
    request: BatchSubmissionRequest,
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
    coordinator: BatchSubmissionCoordinator = Depends(get_batch_submission_coordinator),
):
    """
    Public: submit a batch of approval decisions

    Each decision succeeds or fails on its own; the response carries one result
    per decision in request order and success=false if any of them failed.
    """
    try:
        session = service.validate(db, request.share_token)

        decisions = [
            DecisionItem(
                post_id=d.post_id,
                post_type=d.post_type,
                approval_status=d.approval_status,
                client_comments=d.client_comments,
                edited_caption=d.edited_caption,
            )
            for d in request.decisions
        ]

        batch = await coordinator.submit(session, decisions)
        return BatchSubmissionResponse(**batch.to_dict())

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error submitting decisions for token {token_preview(request.share_token)}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{session_id}", response_model=ApprovalSessionResponse)
async def get_approval_session(
    session_id: str = Path(..., description="Approval session ID"),
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
):
    """Get an approval session by ID"""
    try:
        session = service.get(db, session_id)
        return _session_response(session, service)

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting approval session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{session_id}/posts")
async def get_approval_board(
    session_id: str = Path(..., description="Approval session ID"),
    db: Session = Depends(get_db),
    service: ApprovalSessionService = Depends(get_approval_session_service),
) -> Dict[str, Any]:
    """
    Agency view of a session: its posts with the client's current decisions

    Unlike the share-link endpoints this keeps working after the link has
    expired, so outcomes stay visible.
    """
    try:
        session = service.get(db, session_id, allow_expired=True)
        eligible = service.list_eligible_posts(db, session, allow_expired=True)
        weeks = service.group_by_week(eligible)

        counts = {}
        for entry in eligible:
            status = entry.decision.approval_status
            counts[status] = counts.get(status, 0) + 1

        return {
            "session": _session_response(session, service).model_dump(),
            "posts": [entry.to_dict() for entry in eligible],
            "weeks": [week.to_dict() for week in weeks],
            "decision_counts": counts,
        }

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading approval board for session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")
