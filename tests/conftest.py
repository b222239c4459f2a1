"""
Shared fixtures: in-memory SQLite database, recording fakes for the work
queue, blob store, notifier and event sink, and builders for test data.
"""

import os

# must be set before labelflow.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import labelflow.models  # noqa: E402,F401
from labelflow.db.session import Base  # noqa: E402
from labelflow.models.annotation import Annotation  # noqa: E402
from labelflow.models.asset import Asset  # noqa: E402
from labelflow.models.label import Label  # noqa: E402
from labelflow.models.project import Project  # noqa: E402
from labelflow.models.task import Task  # noqa: E402
from labelflow.services.completion import CompletionWatcher  # noqa: E402
from labelflow.services.queue_router import QueueRouter  # noqa: E402
from labelflow.services.state_machine import TaskStateMachine  # noqa: E402


class RecordingQueue:
    """WorkQueue double that remembers every enqueue."""

    def __init__(self):
        self.jobs = []
        self.fail = False
        self.closed = False

    def enqueue(self, queue_name, job_name, payload, options):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.jobs.append((queue_name, job_name, payload, options))
        return f"job-{len(self.jobs)}"

    def close(self):
        self.closed = True

    @property
    def queues(self):
        return [j[0] for j in self.jobs]


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, type, title, message, context=None):
        self.sent.append({"user_id": user_id, "type": type, "title": title, "context": context or {}})

    def types(self):
        return [n["type"] for n in self.sent]


class FakeS3:
    """Blob store double keeping objects in memory."""

    def __init__(self):
        self.objects = {}
        self.presigned = []

    def put_bytes(self, *, bucket, key, data, content_type, content_disposition=None):
        self.objects[(bucket, key)] = {
            "data": data,
            "content_type": content_type,
            "content_disposition": content_disposition,
        }

    def delete_object(self, *, bucket, key):
        self.objects.pop((bucket, key), None)

    def presign_get(self, *, bucket, key, expires_s=None, response_headers=None):
        self.presigned.append((bucket, key, expires_s, response_headers))
        return f"http://s3.test/{bucket}/{key}?X-Amz-Expires={expires_s}"


class FixedClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class Factory:
    """Builders for projects, labels, tasks and annotations."""

    def __init__(self, db):
        self.db = db
        self._tick = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _next_time(self):
        # distinct, increasing creation times
        self._tick = self._tick + timedelta(seconds=1)
        return self._tick

    def project(self, name="Cars", tool_type="image", owner_id="owner-1", reviewer_id=None):
        project = Project(name=name, tool_type=tool_type, owner_id=owner_id, reviewer_id=reviewer_id)
        self.db.add(project)
        self.db.commit()
        return project

    def label(self, project, name="car", attributes=None):
        label = Label(project_id=project.id, name=name, attributes=attributes or [])
        self.db.add(label)
        self.db.commit()
        return label

    def asset(self, project, name="img1.png", metadata: Optional[dict] = None, content=None, commit=True):
        asset = Asset(
            project_id=project.id,
            name=name,
            type=project.tool_type,
            url=f"s3://assets/{name}",
            metadata_=metadata if metadata is not None else {"width": 100, "height": 200},
            content=content,
            created_at=self._next_time(),
        )
        self.db.add(asset)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return asset

    def task(
        self,
        project,
        status="label",
        name="img1.png",
        metadata: Optional[dict] = None,
        content: Optional[str] = None,
        priority=0,
        assigned_to=None,
    ):
        asset = self.asset(project, name, metadata, content, commit=False)
        task = Task(
            project_id=project.id,
            asset_id=asset.id,
            status=status,
            priority=priority,
            assigned_to=assigned_to,
            created_at=self._next_time(),
        )
        self.db.add(task)
        self.db.commit()
        return task

    def annotation(self, task, label, type_="bbox", data: Optional[dict[str, Any]] = None):
        if data is None:
            data = {"bbox": {"x": 10, "y": 20, "width": 30, "height": 40}, "attributes": {}}
        ann = Annotation(task_id=task.id, label_id=label.id, type=type_, data=data)
        self.db.add(ann)
        self.db.commit()
        return ann


@pytest.fixture
def db_engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def s3():
    return FakeS3()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def machine(db, queue, sink, notifier, clock):
    return TaskStateMachine(
        db,
        QueueRouter(queue),
        CompletionWatcher(db, sink),
        notifier,
        strict=False,
        clock=clock,
    )
