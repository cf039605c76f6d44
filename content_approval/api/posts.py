"""
Posts API

Editor-facing endpoints for reading, editing, deleting and transitioning posts
in any partition, and for managing the advisory edit lock ("editing session").
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field

from content_approval.db.database import get_db
from content_approval.core.errors import ApprovalEngineError, InvalidStateError
from content_approval.core.time_utils import isoformat_or_none
from content_approval.services.edit_lock_manager import EditLockManager, get_edit_lock_manager
from content_approval.services.post_state_machine import PostStateMachine, get_post_state_machine
from content_approval.services.record_resolver import RecordResolver, get_record_resolver

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/posts", tags=["Posts"])

EDIT_FIELDS = {
    "caption",
    "notes",
    "image_url",
    "media_type",
    "media_alt_text",
    "tags",
    "scheduled_date",
    "scheduled_time",
}


# Request/Response Models

class PostUpdateRequest(BaseModel):
    """Edit (or draft-save) a post; only fields that are sent are changed"""
    model_config = ConfigDict(from_attributes=True)

    editor_id: str = Field(..., description="Editor making the change")
    post_type: Optional[str] = Field(None, description="Restrict lookup to scheduled or planner_scheduled")

    caption: Optional[str] = Field(None, description="Post caption")
    notes: Optional[str] = Field(None, description="Internal notes")
    image_url: Optional[str] = Field(None, description="Image URL")
    media_type: Optional[str] = Field(None, description="Media type (drafting posts)")
    media_alt_text: Optional[str] = Field(None, description="Alt text (drafting posts)")
    tags: Optional[List[str]] = Field(None, description="Tags (drafting posts)")
    scheduled_date: Optional[date] = Field(None, description="Calendar date (scheduled calendar posts)")
    scheduled_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$", description="HH:MM[:SS]")

    edit_reason: Optional[str] = Field(None, description="Why the edit was made")
    force_edit: bool = Field(False, description="Take over another editor's live lock")
    save_as_draft: bool = Field(False, description="Store changes in draft_changes instead of applying them")


class PostStatusRequest(BaseModel):
    """Move a drafting post along its publish lifecycle"""

    status: str = Field(..., description="Target status")
    editor_id: Optional[str] = Field(None, description="Editor making the change")
    post_type: Optional[str] = Field(None)


class EditingSessionStartRequest(BaseModel):
    """Claim the edit lock"""

    editor_id: str = Field(..., description="Editor claiming the lock")
    force_start: bool = Field(False, description="Take over another editor's live lock")
    post_type: Optional[str] = Field(None)


class EditingSessionResponse(BaseModel):
    success: bool = True
    currentlyEditingBy: Optional[str]
    editingStartedAt: Optional[str]
    overridden: bool = False


class EditingStatusResponse(BaseModel):
    isActive: bool
    currentlyEditingBy: Optional[str]
    editingStartedAt: Optional[str]
    canEdit: bool
    status: Optional[str]


class RevisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: str
    partition: str
    revision_number: int
    edited_by: str
    edited_at: Optional[str]
    previous_caption: str
    new_caption: str
    edit_reason: Optional[str]


def _raise_http(e: ApprovalEngineError):
    raise HTTPException(status_code=e.status_code, detail=e.to_detail())


# API Endpoints

@router.get("/{post_id}")
async def get_post(
    post_id: str = Path(..., description="Post ID"),
    post_type: Optional[str] = Query(None, description="scheduled or planner_scheduled"),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
) -> Dict[str, Any]:
    """Get a post from whichever partition holds it"""
    try:
        resolved = resolver.resolve(db, post_id, post_type)
        return resolved.post.to_dict()

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.put("/{post_id}")
async def update_post(
    request: PostUpdateRequest,
    post_id: str = Path(..., description="Post ID"),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    state_machine: PostStateMachine = Depends(get_post_state_machine),
) -> Dict[str, Any]:
    """
    Edit a post

    Finalized posts (published, archived, deleted) are rejected. A live lock
    held by another editor returns 409 with the holder's details unless
    force_edit is set. Changing the caption of an approved post sends it back
    for reapproval. With save_as_draft the changes are parked in draft_changes.
    """
    try:
        resolved = resolver.resolve(db, post_id, request.post_type)

        if request.save_as_draft:
            draft = request.model_dump(mode="json", exclude_unset=True, include=EDIT_FIELDS)
            post = state_machine.save_draft(
                db, resolved, draft, editor_id=request.editor_id, force=request.force_edit
            )
            return {"post": post.to_dict(), "saved_as_draft": True}

        changes = request.model_dump(exclude_unset=True, include=EDIT_FIELDS)
        outcome = state_machine.apply_edit(
            db,
            resolved,
            changes,
            editor_id=request.editor_id,
            force=request.force_edit,
            edit_reason=request.edit_reason,
        )
        return outcome.to_dict()

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/{post_id}")
async def delete_post(
    post_id: str = Path(..., description="Post ID"),
    post_type: Optional[str] = Query(None),
    editor_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    state_machine: PostStateMachine = Depends(get_post_state_machine),
) -> Dict[str, Any]:
    """Delete a post; published posts must be archived instead"""
    try:
        resolved = resolver.resolve(db, post_id, post_type)
        state_machine.delete(db, resolved, editor_id=editor_id)
        return {"success": True, "message": "Post deleted successfully"}

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{post_id}/status")
async def transition_post_status(
    request: PostStatusRequest,
    post_id: str = Path(..., description="Post ID"),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    state_machine: PostStateMachine = Depends(get_post_state_machine),
) -> Dict[str, Any]:
    """Change a drafting post's status"""
    try:
        resolved = resolver.resolve(db, post_id, request.post_type)
        post = state_machine.transition(db, resolved, request.status, editor_id=request.editor_id)
        return post.to_dict()

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error changing status of post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{post_id}/editing-session", response_model=EditingSessionResponse)
async def start_editing_session(
    request: EditingSessionStartRequest,
    post_id: str = Path(..., description="Post ID"),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    lock_manager: EditLockManager = Depends(get_edit_lock_manager),
):
    """Claim the edit lock; 409 if another editor holds a live lock and force_start is not set"""
    try:
        resolved = resolver.resolve(db, post_id, request.post_type)
        if not resolved.post.is_caption_editable:
            raise InvalidStateError(
                f"Post {post_id} is {resolved.post.status} and can no longer be edited",
                details={"status": resolved.post.status},
            )

        grant = lock_manager.claim(db, resolved, request.editor_id, force=request.force_start)
        return EditingSessionResponse(
            currentlyEditingBy=grant.locked_by,
            editingStartedAt=isoformat_or_none(grant.locked_since),
            overridden=grant.overridden,
        )

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error starting editing session for post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/{post_id}/editing-session")
async def end_editing_session(
    post_id: str = Path(..., description="Post ID"),
    editor_id: str = Query(..., description="Editor ending the session"),
    force_end: bool = Query(False, description="End another editor's session"),
    post_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    lock_manager: EditLockManager = Depends(get_edit_lock_manager),
) -> Dict[str, Any]:
    """Release the edit lock"""
    try:
        resolved = resolver.resolve(db, post_id, post_type)
        lock_manager.release(db, resolved, editor_id, force=force_end)
        return {"success": True, "message": "Editing session ended"}

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error ending editing session for post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{post_id}/editing-session", response_model=EditingStatusResponse)
async def get_editing_session(
    post_id: str = Path(..., description="Post ID"),
    editor_id: Optional[str] = Query(None, description="Editor asking; canEdit is computed for them"),
    post_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    lock_manager: EditLockManager = Depends(get_edit_lock_manager),
):
    """Who is editing the post right now, and whether the caller may edit"""
    try:
        resolved = resolver.resolve(db, post_id, post_type)
        status = lock_manager.status(resolved.post, editor_id)
        return EditingStatusResponse(status=resolved.post.status, **status.to_dict())

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting editing session for post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{post_id}/revisions", response_model=List[RevisionResponse])
async def list_post_revisions(
    post_id: str = Path(..., description="Post ID"),
    post_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    resolver: RecordResolver = Depends(get_record_resolver),
    state_machine: PostStateMachine = Depends(get_post_state_machine),
):
    """Caption history, newest first"""
    try:
        resolved = resolver.resolve(db, post_id, post_type)
        revisions = state_machine.list_revisions(db, resolved, limit=limit, offset=offset)
        return [RevisionResponse(**r.to_dict()) for r in revisions]

    except ApprovalEngineError as e:
        _raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing revisions for post {post_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")
