"""
Shared fixtures: a file-backed SQLite database per test, a controllable clock,
an in-memory notification sink and factories for posts in each partition.
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from content_approval.core.config import Settings
from content_approval.db.database import build_engine, create_all_tables
from content_approval.db.models import (
    ApprovalStatus,
    CalendarScheduledPost,
    CalendarUnscheduledPost,
    DraftingPost,
    PostStatus,
)
from content_approval.services.notification_sink import InMemoryNotificationSink

CLIENT_ID = "client-1"
PROJECT_ID = "project-1"


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class PostFactory:
    """Creates committed posts in any partition"""

    def __init__(self, db):
        self.db = db

    def _create(self, model, **kwargs):
        values = {
            "id": str(uuid.uuid4()),
            "client_id": CLIENT_ID,
            "project_id": PROJECT_ID,
            "caption": "Original caption",
        }
        values.update(kwargs)
        post = model(**values)
        self.db.add(post)
        self.db.commit()
        self.db.refresh(post)
        return post

    def drafting(self, **kwargs):
        kwargs.setdefault("status_value", PostStatus.DRAFT.value)
        return self._create(DraftingPost, **kwargs)

    def scheduled(self, **kwargs):
        kwargs.setdefault("scheduled_date", date(2026, 3, 4))
        kwargs.setdefault("scheduled_time", "10:00")
        return self._create(CalendarScheduledPost, **kwargs)

    def unscheduled(self, **kwargs):
        return self._create(CalendarUnscheduledPost, **kwargs)

    def approved(self, factory="drafting", **kwargs):
        kwargs.setdefault("approval_status", ApprovalStatus.APPROVED.value)
        return getattr(self, factory)(**kwargs)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="test",
        database_url="sqlite://",
        edit_lock_timeout_minutes=30,
        approval_session_ttl_days=30,
        approval_session_max_ttl_days=365,
        share_base_url="https://app.example.com/",
        batch_max_concurrency=4,
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'content_approval_test.db'}")
    create_all_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def test_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    # A Monday morning
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def posts(test_db):
    return PostFactory(test_db)


@pytest.fixture
def api_client(session_factory, settings, clock, sink):
    """TestClient whose routes share the test database, clock and sink"""
    from fastapi.testclient import TestClient

    from content_approval.core.app_factory import create_test_app
    from content_approval.db.database import get_db
    from content_approval.services.approval_session_service import (
        ApprovalSessionService,
        get_approval_session_service,
    )
    from content_approval.services.batch_submission_coordinator import (
        BatchSubmissionCoordinator,
        get_batch_submission_coordinator,
    )
    from content_approval.services.edit_lock_manager import EditLockManager, get_edit_lock_manager
    from content_approval.services.post_state_machine import PostStateMachine, get_post_state_machine

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    lock_manager = EditLockManager(settings=settings, clock=clock)
    state_machine = PostStateMachine(lock_manager=lock_manager, notification_sink=sink, clock=clock)

    app = create_test_app()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_edit_lock_manager] = lambda: lock_manager
    app.dependency_overrides[get_post_state_machine] = lambda: state_machine
    app.dependency_overrides[get_approval_session_service] = lambda: ApprovalSessionService(
        settings=settings, clock=clock
    )
    app.dependency_overrides[get_batch_submission_coordinator] = lambda: BatchSubmissionCoordinator(
        session_factory=session_factory,
        settings=settings,
        clock=clock,
        notification_sink=sink,
    )

    with TestClient(app) as client:
        yield client
