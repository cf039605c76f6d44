"""
Tests for the decision store's upsert semantics
"""

from unittest.mock import patch

import pytest

from content_approval.core.errors import ValidationError
from content_approval.db.models import ApprovalSession, PostApproval
from content_approval.services import approval_decision_store
from content_approval.services.approval_decision_store import ApprovalDecisionStore


@pytest.fixture
def store(clock):
    return ApprovalDecisionStore(clock=clock)


@pytest.fixture
def approval_session(test_db, clock):
    session = ApprovalSession(
        id="session-1",
        share_token="token-1",
        client_id="client-1",
        project_id="project-1",
        expires_at=clock.now.replace(year=2027),
        created_at=clock.now,
    )
    test_db.add(session)
    test_db.commit()
    return session


class TestUpsert:

    def test_repeated_upserts_keep_one_row(self, store, test_db, approval_session, clock):
        store.upsert(test_db, approval_session.id, "post-1", "scheduled", "rejected", comments="too long")
        clock.advance(minutes=5)
        store.upsert(test_db, approval_session.id, "post-1", "scheduled", "needs_attention")
        clock.advance(minutes=5)
        decision = store.upsert(test_db, approval_session.id, "post-1", "scheduled", "approved", comments="great")

        rows = test_db.query(PostApproval).filter(PostApproval.session_id == approval_session.id).all()
        assert len(rows) == 1
        assert decision.approval_status == "approved"
        assert decision.client_comments == "great"

    def test_approved_at_set_only_when_approved(self, store, test_db, approval_session):
        approved = store.upsert(test_db, approval_session.id, "post-1", "scheduled", "approved")
        assert approved.approved_at is not None

        rejected = store.upsert(test_db, approval_session.id, "post-1", "scheduled", "rejected")
        assert rejected.approved_at is None

    def test_post_type_is_part_of_the_key(self, store, test_db, approval_session):
        store.upsert(test_db, approval_session.id, "post-1", "scheduled", "approved")
        store.upsert(test_db, approval_session.id, "post-1", "planner_scheduled", "rejected")

        decisions = store.list_for_session(test_db, approval_session.id)
        assert sorted((d.post_type, d.approval_status) for d in decisions) == [
            ("planner_scheduled", "rejected"),
            ("scheduled", "approved"),
        ]

    @pytest.mark.parametrize("status", ["pending", "maybe", ""])
    def test_invalid_status_rejected(self, store, test_db, approval_session, status):
        with pytest.raises(ValidationError):
            store.upsert(test_db, approval_session.id, "post-1", "scheduled", status)

    def test_invalid_post_type_rejected(self, store, test_db, approval_session):
        with pytest.raises(ValidationError):
            store.upsert(test_db, approval_session.id, "post-1", "tiktok", "approved")

    def test_portable_fallback_updates_existing_row(self, store, test_db, approval_session):
        store.upsert(test_db, approval_session.id, "post-1", "scheduled", "rejected")

        # Pretend the dialect has no ON CONFLICT support
        with patch.dict(approval_decision_store._DIALECT_INSERTS, clear=True):
            decision = store.upsert(test_db, approval_session.id, "post-1", "scheduled", "approved")
            store.seed_pending(test_db, approval_session.id, "post-2", "scheduled")
            test_db.commit()

        assert decision.approval_status == "approved"
        assert test_db.query(PostApproval).count() == 2
        assert store.get(test_db, approval_session.id, "post-2", "scheduled").approval_status == "pending"


class TestSeedPending:

    def test_seed_does_not_overwrite_decision(self, store, test_db, approval_session):
        store.upsert(test_db, approval_session.id, "post-1", "scheduled", "approved")

        store.seed_pending(test_db, approval_session.id, "post-1", "scheduled")
        test_db.commit()

        assert store.get(test_db, approval_session.id, "post-1", "scheduled").approval_status == "approved"

    def test_seed_twice_creates_one_pending_row(self, store, test_db, approval_session):
        store.seed_pending(test_db, approval_session.id, "post-1", "planner_scheduled")
        store.seed_pending(test_db, approval_session.id, "post-1", "planner_scheduled")
        test_db.commit()

        decisions = store.list_for_session(test_db, approval_session.id)
        assert len(decisions) == 1
        assert decisions[0].approval_status == "pending"
        assert decisions[0].approved_at is None
