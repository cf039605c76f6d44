"""
Tests for approval session creation, token validation and eligible-post listing
"""

from datetime import date, timedelta

import pytest

from content_approval.core.errors import ExpiredError, NotFoundError, ValidationError
from content_approval.db.models import PostApproval
from content_approval.services.approval_session_service import (
    ApprovalSessionService,
    group_by_week,
    week_start_for,
)

CLIENT_ID = "client-1"
PROJECT_ID = "project-1"


@pytest.fixture
def service(settings, clock):
    return ApprovalSessionService(settings=settings, clock=clock)


class TestCreate:

    def test_create_seeds_pending_decisions(self, service, test_db, posts, clock):
        drafting = posts.drafting()
        calendar = posts.scheduled()

        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [drafting.id, calendar.id])

        session = created.session
        assert session.client_id == CLIENT_ID
        assert session.project_id == PROJECT_ID
        assert session.share_token
        assert created.share_url == f"https://app.example.com/approval/{session.share_token}"
        assert created.skipped_post_ids == []
        assert created.seeded == [
            {"post_id": drafting.id, "post_type": "scheduled"},
            {"post_id": calendar.id, "post_type": "planner_scheduled"},
        ]

        rows = test_db.query(PostApproval).filter(PostApproval.session_id == session.id).all()
        assert {(r.post_id, r.post_type, r.approval_status) for r in rows} == {
            (drafting.id, "scheduled", "pending"),
            (calendar.id, "planner_scheduled", "pending"),
        }

    def test_expiry_defaults_to_configured_ttl(self, service, test_db, posts, clock):
        post = posts.drafting()

        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id])

        assert service.validate(test_db, created.session.share_token).id == created.session.id
        assert created.session.is_expired(clock.now + timedelta(days=30)) is True
        assert created.session.is_expired(clock.now + timedelta(days=29, hours=23)) is False

    def test_tokens_are_unique(self, service, test_db, posts):
        post = posts.drafting()

        tokens = {service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id]).session.share_token for _ in range(5)}

        assert len(tokens) == 5

    def test_unknown_and_foreign_posts_are_skipped(self, service, test_db, posts):
        own = posts.drafting()
        foreign = posts.drafting(client_id="client-2")
        other_project = posts.scheduled(project_id="project-2")

        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [own.id, "missing", foreign.id, other_project.id])

        assert created.seeded == [{"post_id": own.id, "post_type": "scheduled"}]
        assert created.skipped_post_ids == ["missing", foreign.id, other_project.id]

    def test_projectless_session_only_covers_projectless_posts(self, service, test_db, posts):
        loose = posts.unscheduled(project_id=None)
        in_project = posts.unscheduled()

        created = service.create(test_db, CLIENT_ID, None, [loose.id, in_project.id])

        assert [s["post_id"] for s in created.seeded] == [loose.id]
        assert created.skipped_post_ids == [in_project.id]

    def test_duplicate_ids_seed_once(self, service, test_db, posts):
        post = posts.drafting()

        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id, post.id])

        assert len(created.seeded) == 1

    def test_empty_selection_rejected(self, service, test_db):
        with pytest.raises(ValidationError):
            service.create(test_db, CLIENT_ID, PROJECT_ID, [])

    @pytest.mark.parametrize("ttl_days", [0, -1, 366])
    def test_ttl_out_of_range_rejected(self, service, test_db, posts, ttl_days):
        post = posts.drafting()

        with pytest.raises(ValidationError):
            service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id], ttl_days=ttl_days)


class TestValidate:

    def test_unknown_token(self, service, test_db):
        with pytest.raises(NotFoundError):
            service.validate(test_db, "not-a-token")

    def test_blank_token(self, service, test_db):
        with pytest.raises(NotFoundError):
            service.validate(test_db, "")

    def test_expired_token(self, service, test_db, posts, clock):
        post = posts.drafting()
        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id], ttl_days=1)

        clock.advance(days=1)

        with pytest.raises(ExpiredError):
            service.validate(test_db, created.session.share_token)
        with pytest.raises(ExpiredError):
            service.get(test_db, created.session.id)
        with pytest.raises(ExpiredError):
            service.list_eligible_posts(test_db, created.session)

    def test_get_unknown_session(self, service, test_db):
        with pytest.raises(NotFoundError):
            service.get(test_db, "missing-session")


class TestEligiblePosts:

    def test_lists_only_seeded_posts_with_decisions(self, service, test_db, posts):
        selected = posts.scheduled()
        posts.scheduled()  # same client, not selected

        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [selected.id])
        eligible = service.list_eligible_posts(test_db, created.session)

        assert [e.post.id for e in eligible] == [selected.id]
        assert eligible[0].decision.approval_status == "pending"
        data = eligible[0].to_dict()
        assert data["approval"]["approval_status"] == "pending"
        assert data["post_type"] == "planner_scheduled"

    def test_deleted_posts_drop_out(self, service, test_db, posts):
        kept = posts.drafting()
        removed = posts.drafting()
        created = service.create(test_db, CLIENT_ID, PROJECT_ID, [kept.id, removed.id])

        test_db.delete(removed)
        test_db.commit()

        eligible = service.list_eligible_posts(test_db, created.session)
        assert [e.post.id for e in eligible] == [kept.id]

    def test_list_for_project_newest_first(self, service, test_db, posts, clock):
        post = posts.drafting()
        first = service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id]).session
        clock.advance(hours=1)
        second = service.create(test_db, CLIENT_ID, PROJECT_ID, [post.id]).session

        listed = service.list_for_project(test_db, PROJECT_ID)

        assert [s.id for s in listed] == [second.id, first.id]


class TestWeekGrouping:

    def test_week_start_is_monday(self):
        assert week_start_for(date(2026, 3, 8)) == date(2026, 3, 2)  # Sunday
        assert week_start_for(date(2026, 3, 2)) == date(2026, 3, 2)  # Monday

    def test_groups_by_week_with_unscheduled_last(self, service, test_db, posts):
        week_two = posts.scheduled(scheduled_date=date(2026, 3, 10), scheduled_time="09:00")
        week_one_late = posts.scheduled(scheduled_date=date(2026, 3, 6), scheduled_time="18:00")
        week_one_early = posts.scheduled(scheduled_date=date(2026, 3, 3), scheduled_time="08:00")
        backlog = posts.unscheduled()

        created = service.create(
            test_db, CLIENT_ID, PROJECT_ID, [week_two.id, week_one_late.id, week_one_early.id, backlog.id]
        )
        weeks = group_by_week(service.list_eligible_posts(test_db, created.session))

        assert [w.label for w in weeks] == ["W/C 2 March", "W/C 9 March", "Unscheduled"]
        assert [e.post.id for e in weeks[0].posts] == [week_one_early.id, week_one_late.id]
        assert weeks[2].to_dict()["week_start"] is None
