"""
Tests for batch decision submission: isolation between items, scope checks,
client caption edits and the end-to-end approval flow
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from content_approval.core.errors import ValidationError
from content_approval.db.models import PostApproval, PostRevision
from content_approval.services.approval_session_service import ApprovalSessionService
from content_approval.services.batch_submission_coordinator import (
    BatchSubmissionCoordinator,
    DecisionItem,
)
from content_approval.services.notification_sink import NotificationType
from content_approval.services.record_resolver import RecordResolver

CLIENT_ID = "client-1"
PROJECT_ID = "project-1"


@pytest.fixture
def session_service(settings, clock):
    return ApprovalSessionService(settings=settings, clock=clock)


@pytest.fixture
def coordinator(session_factory, settings, clock, sink):
    return BatchSubmissionCoordinator(
        session_factory=session_factory,
        settings=settings,
        clock=clock,
        notification_sink=sink,
    )


def _reload(db, post_id, post_type=None):
    db.expire_all()
    return RecordResolver().resolve(db, post_id, post_type).post


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_session_review_and_submit(self, session_service, coordinator, test_db, posts, sink):
        p1 = posts.drafting()
        p2 = posts.scheduled()

        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [p1.id, p2.id])
        pending = test_db.query(PostApproval).filter(PostApproval.session_id == created.session.id).all()
        assert [r.approval_status for r in pending] == ["pending", "pending"]

        result = await coordinator.submit(created.session, [
            DecisionItem(p1.id, "scheduled", "approved"),
            DecisionItem(p2.id, "planner_scheduled", "rejected", client_comments="resize image"),
        ])

        assert result.success is True
        assert [r.outcome for r in result.results] == ["ok", "ok"]

        test_db.expire_all()
        decisions = {d.post_id: d for d in session_service.decision_store.list_for_session(test_db, created.session.id)}
        assert decisions[p1.id].approval_status == "approved"
        assert decisions[p1.id].approved_at is not None
        assert decisions[p2.id].approval_status == "rejected"
        assert decisions[p2.id].client_comments == "resize image"
        assert decisions[p2.id].approved_at is None

        stored_p1 = _reload(test_db, p1.id, "scheduled")
        stored_p2 = _reload(test_db, p2.id, "planner_scheduled")
        assert stored_p1.approval_status == "approved"
        assert stored_p2.approval_status == "rejected"
        assert stored_p2.client_feedback == "resize image"
        assert stored_p2.needs_attention is False

        recorded = sink.of_type(NotificationType.DECISION_RECORDED)
        assert sorted(e.post_id for e in recorded) == sorted([p1.id, p2.id])

    @pytest.mark.asyncio
    async def test_resubmission_overwrites_decision(self, session_service, coordinator, test_db, posts):
        post = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        await coordinator.submit(created.session, [DecisionItem(post.id, "scheduled", "rejected")])
        await coordinator.submit(created.session, [DecisionItem(post.id, "scheduled", "needs_attention", "tone it down")])

        test_db.expire_all()
        rows = test_db.query(PostApproval).filter(PostApproval.post_id == post.id).all()
        assert len(rows) == 1
        assert rows[0].approval_status == "needs_attention"
        stored = _reload(test_db, post.id)
        assert stored.needs_attention is True
        assert stored.client_feedback == "tone it down"


class TestPartialFailure:

    @pytest.mark.asyncio
    async def test_failures_do_not_affect_other_items(self, session_service, coordinator, test_db, posts):
        ok_one = posts.drafting()
        ok_two = posts.scheduled()
        ok_three = posts.unscheduled()
        wrong_type = posts.drafting()

        created = session_service.create(
            test_db, CLIENT_ID, PROJECT_ID, [ok_one.id, ok_two.id, ok_three.id, wrong_type.id]
        )

        result = await coordinator.submit(created.session, [
            DecisionItem(ok_one.id, "scheduled", "approved"),
            DecisionItem(wrong_type.id, "planner_scheduled", "approved"),
            DecisionItem(ok_two.id, "planner_scheduled", "rejected"),
            DecisionItem(ok_three.id, "planner_scheduled", "maybe"),
            DecisionItem(ok_three.id, "planner_scheduled", "needs_attention"),
        ])

        assert result.success is False
        assert [r.post_id for r in result.results] == [ok_one.id, wrong_type.id, ok_two.id, ok_three.id, ok_three.id]
        assert [r.outcome for r in result.results] == ["ok", "failed", "ok", "failed", "ok"]
        assert result.results[1].error_code == "not_found"
        assert result.results[3].error_code == "validation_error"

        test_db.expire_all()
        store = session_service.decision_store
        assert store.get(test_db, created.session.id, ok_one.id, "scheduled").approval_status == "approved"
        assert store.get(test_db, created.session.id, ok_two.id, "planner_scheduled").approval_status == "rejected"
        assert store.get(test_db, created.session.id, wrong_type.id, "scheduled").approval_status == "pending"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_per_item(self, session_service, coordinator, test_db, posts):
        healthy = posts.drafting()
        broken = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [healthy.id, broken.id])

        original_upsert = coordinator.decision_store.upsert

        def flaky_upsert(db, session_id, post_id, *args, **kwargs):
            if post_id == broken.id:
                raise RuntimeError("connection reset")
            return original_upsert(db, session_id, post_id, *args, **kwargs)

        with patch.object(coordinator.decision_store, "upsert", side_effect=flaky_upsert):
            result = await coordinator.submit(created.session, [
                DecisionItem(healthy.id, "scheduled", "approved"),
                DecisionItem(broken.id, "scheduled", "approved"),
            ])

        assert [r.outcome for r in result.results] == ["ok", "failed"]
        assert result.results[1].error_code == "internal_error"
        assert _reload(test_db, broken.id).approval_status == "pending"

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, session_service, coordinator, test_db, posts):
        post = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        with pytest.raises(ValidationError):
            await coordinator.submit(created.session, [])


class TestScope:

    @pytest.mark.asyncio
    async def test_other_clients_post_forbidden(self, session_service, coordinator, test_db, posts):
        own = posts.drafting()
        foreign = posts.drafting(client_id="client-2")
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [own.id])

        result = await coordinator.submit(created.session, [DecisionItem(foreign.id, "scheduled", "approved")])

        assert result.results[0].error_code == "forbidden"
        assert _reload(test_db, foreign.id).approval_status == "pending"

    @pytest.mark.asyncio
    async def test_post_outside_session_forbidden(self, session_service, coordinator, test_db, posts):
        selected = posts.drafting()
        not_selected = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [selected.id])

        result = await coordinator.submit(created.session, [DecisionItem(not_selected.id, "scheduled", "approved")])

        assert result.results[0].error_code == "forbidden"
        assert test_db.query(PostApproval).filter(PostApproval.post_id == not_selected.id).count() == 0

    @pytest.mark.asyncio
    async def test_projectless_session_rejects_project_posts(self, session_service, coordinator, test_db, posts):
        loose = posts.unscheduled(project_id=None)
        in_project = posts.unscheduled()
        created = session_service.create(test_db, CLIENT_ID, None, [loose.id])

        result = await coordinator.submit(created.session, [
            DecisionItem(loose.id, "planner_scheduled", "approved"),
            DecisionItem(in_project.id, "planner_scheduled", "approved"),
        ])

        assert [r.outcome for r in result.results] == ["ok", "failed"]
        assert result.results[1].error_code == "forbidden"


class TestClientCaptionEdits:

    @pytest.mark.asyncio
    async def test_edit_then_decision_on_approved_post(self, session_service, coordinator, test_db, posts, sink):
        post = posts.approved()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        result = await coordinator.submit(created.session, [
            DecisionItem(post.id, "scheduled", "needs_attention", "see my edit", edited_caption="Client wording"),
        ])

        assert result.success is True
        stored = _reload(test_db, post.id)
        assert stored.caption == "Client wording"
        assert stored.needs_reapproval is True
        assert stored.approval_status == "needs_attention"
        assert stored.needs_attention is True
        assert stored.last_edited_by == "client:client-1"
        assert stored.currently_editing_by is None
        assert len(sink.of_type(NotificationType.REAPPROVAL_REQUIRED)) == 1

        revision = test_db.query(PostRevision).filter(PostRevision.post_id == post.id).one()
        assert revision.previous_caption == "Original caption"
        assert revision.edited_by == "client:client-1"

    @pytest.mark.asyncio
    async def test_approving_own_edit_clears_reapproval(self, session_service, coordinator, test_db, posts):
        post = posts.approved()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        await coordinator.submit(created.session, [
            DecisionItem(post.id, "scheduled", "approved", edited_caption="Client wording"),
        ])

        stored = _reload(test_db, post.id)
        assert stored.caption == "Client wording"
        assert stored.approval_status == "approved"
        assert stored.needs_reapproval is False

    @pytest.mark.asyncio
    async def test_blank_or_unchanged_caption_is_not_an_edit(self, session_service, coordinator, test_db, posts):
        first = posts.drafting()
        second = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [first.id, second.id])

        await coordinator.submit(created.session, [
            DecisionItem(first.id, "scheduled", "approved", edited_caption="   "),
            DecisionItem(second.id, "scheduled", "approved", edited_caption="Original caption"),
        ])

        assert _reload(test_db, first.id).edit_count == 0
        assert _reload(test_db, second.id).edit_count == 0
        assert test_db.query(PostRevision).count() == 0

    @pytest.mark.asyncio
    async def test_live_editor_lock_blocks_client_edit(self, session_service, coordinator, test_db, posts, clock):
        post = posts.drafting(currently_editing_by="editor-a", editing_started_at=clock.now - timedelta(minutes=5))
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        result = await coordinator.submit(created.session, [
            DecisionItem(post.id, "scheduled", "approved", edited_caption="Client wording"),
        ])

        assert result.results[0].error_code == "lock_conflict"
        stored = _reload(test_db, post.id)
        assert stored.caption == "Original caption"
        assert stored.approval_status == "pending"
        decision = session_service.decision_store.get(test_db, created.session.id, post.id, "scheduled")
        assert decision.approval_status == "pending"

    @pytest.mark.asyncio
    async def test_client_edit_keeps_editor_draft(self, session_service, coordinator, test_db, posts, clock):
        post = posts.drafting()
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])
        coordinator.state_machine.save_draft(
            test_db,
            RecordResolver().resolve(test_db, post.id),
            {"caption": "Editor idea", "notes": "use blue photo"},
            editor_id="editor-a",
        )
        clock.advance(minutes=31)

        result = await coordinator.submit(created.session, [
            DecisionItem(post.id, "scheduled", "approved", edited_caption="Client wording"),
        ])

        assert result.success is True
        stored = _reload(test_db, post.id)
        assert stored.caption == "Client wording"
        assert stored.draft_changes == {"caption": "Editor idea", "notes": "use blue photo"}

    @pytest.mark.asyncio
    async def test_decision_without_edit_ignores_lock(self, session_service, coordinator, test_db, posts, clock):
        post = posts.drafting(currently_editing_by="editor-a", editing_started_at=clock.now)
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        result = await coordinator.submit(created.session, [DecisionItem(post.id, "scheduled", "approved")])

        assert result.success is True
        assert _reload(test_db, post.id).currently_editing_by == "editor-a"

    @pytest.mark.asyncio
    async def test_published_post_rejects_client_edit(self, session_service, coordinator, test_db, posts):
        post = posts.drafting(status_value="published")
        created = session_service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        result = await coordinator.submit(created.session, [
            DecisionItem(post.id, "scheduled", "approved", edited_caption="Too late"),
        ])

        assert result.results[0].error_code == "invalid_state"
