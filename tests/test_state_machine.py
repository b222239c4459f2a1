"""
Tests for the task lifecycle: transitions, queue routing, bulk updates,
review decisions, assignment and queue statistics.
"""

import pytest

from labelflow.core.errors import InvalidStateError, NotFoundError, StorageError, ValidationError
from labelflow.models.annotation import Annotation
from labelflow.services.queue_router import QueueRouter
from labelflow.services.state_machine import TaskStateMachine, normalize_status


class TestNormalizeStatus:
    def test_known_statuses(self):
        assert normalize_status("review") == "review"
        assert normalize_status(" Completed ") == "completed"

    def test_rejected_is_label(self):
        assert normalize_status("rejected") == "label"

    @pytest.mark.parametrize("value", ["", "done", None, 3])
    def test_unknown_status_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_status(value)


class TestTransition:
    def test_last_write_wins_and_one_enqueue_each(self, machine, factory, queue, db):
        project = factory.project()
        task = factory.task(project, status="label")

        for status in ["review", "label", "completed"]:
            machine.transition(task.id, status)

        db.refresh(task)
        assert task.status == "completed"
        assert queue.queues == ["review-queue", "label-queue", "completed-queue"]

    def test_job_payload(self, machine, factory, queue):
        project = factory.project()
        task = factory.task(project)

        machine.transition(task.id, "review")

        queue_name, job_name, payload, options = queue.jobs[0]
        assert (queue_name, job_name) == ("review-queue", "review-task")
        assert payload["task_id"] == task.id
        assert isinstance(payload["timestamp"], int)
        assert options.priority == 1

    def test_prelabel_is_not_queued(self, machine, factory, queue):
        project = factory.project()
        task = factory.task(project)

        machine.transition(task.id, "prelabel")

        assert task.status == "prelabel"
        assert queue.jobs == []

    def test_unknown_status_does_not_mutate(self, machine, factory, queue, db):
        project = factory.project()
        task = factory.task(project, status="review")

        with pytest.raises(ValidationError):
            machine.transition(task.id, "archived")

        db.refresh(task)
        assert task.status == "review"
        assert queue.jobs == []

    def test_missing_task(self, machine, queue):
        with pytest.raises(NotFoundError):
            machine.transition(999, "review")
        assert queue.jobs == []

    def test_rejected_alias_goes_to_label_queue(self, machine, factory, queue):
        project = factory.project()
        task = factory.task(project, status="review")

        machine.transition(task.id, "rejected")

        assert task.status == "label"
        assert queue.queues == ["label-queue"]

    def test_timestamps(self, machine, factory, clock):
        project = factory.project()
        task = factory.task(project, status="prelabel")

        machine.transition(task.id, "label")
        started = task.started_at
        assert started == clock.now

        clock.advance(minutes=5)
        machine.transition(task.id, "review")
        machine.transition(task.id, "label")
        assert task.started_at == started  # kept once set

        machine.transition(task.id, "completed")
        assert task.completed_at == clock.now

    def test_broker_failure_keeps_transition(self, machine, factory, queue, db):
        project = factory.project()
        task = factory.task(project)
        queue.fail = True

        machine.transition(task.id, "review")

        db.refresh(task)
        assert task.status == "review"


class TestStrictMode:
    @pytest.fixture
    def strict(self, db, queue):
        return TaskStateMachine(db, QueueRouter(queue), strict=True)

    def test_allowed_path(self, strict, factory):
        project = factory.project()
        task = factory.task(project, status="prelabel")
        for status in ["label", "review", "completed", "review"]:
            strict.transition(task.id, status)
        assert task.status == "review"

    def test_skipping_review_is_refused(self, strict, factory, queue):
        project = factory.project()
        task = factory.task(project, status="label")

        with pytest.raises(InvalidStateError):
            strict.transition(task.id, "completed")
        assert queue.jobs == []

    def test_same_status_is_allowed(self, strict, factory):
        project = factory.project()
        task = factory.task(project, status="review")
        strict.transition(task.id, "review")
        assert task.status == "review"


class TestReviewDecision:
    def test_approve_from_label_is_invalid(self, machine, factory):
        project = factory.project()
        task = factory.task(project, status="label")

        with pytest.raises(InvalidStateError):
            machine.review_decision(task.id, "approve")

    def test_approve_completes(self, machine, factory, queue):
        project = factory.project()
        task = factory.task(project, status="review")

        machine.review_decision(task.id, "approve")

        assert task.status == "completed"
        assert queue.queues == ["completed-queue"]

    def test_reject_returns_to_label(self, machine, factory):
        project = factory.project()
        task = factory.task(project, status="review")

        machine.review_decision(task.id, "reject")

        assert task.status == "label"

    def test_unknown_action(self, machine, factory):
        project = factory.project()
        task = factory.task(project, status="review")

        with pytest.raises(ValidationError):
            machine.review_decision(task.id, "escalate")


class TestBulkTransition:
    def test_annotations_removed_even_when_transition_fails(self, db, queue, factory):
        """Removal happens before the transition and is kept if it fails."""
        strict = TaskStateMachine(db, QueueRouter(queue), strict=True)
        project = factory.project()
        label = factory.label(project)
        ok = factory.task(project, status="review", name="a.png")
        refused = factory.task(project, status="prelabel", name="b.png")
        for task in (ok, refused):
            factory.annotation(task, label)

        result = strict.bulk_transition(
            [ok.id, refused.id], "completed", remove_annotations=True
        )

        assert (result.total, result.succeeded, result.failed) == (2, 1, 1)
        assert result.results[1].task_id == refused.id
        assert not result.results[1].success
        assert result.results[1].error
        assert db.query(Annotation).count() == 0

    def test_missing_task_does_not_abort_batch(self, machine, factory):
        project = factory.project()
        task = factory.task(project)

        result = machine.bulk_transition([999, task.id], "review")

        assert result.succeeded == 1
        assert result.results[0].error == "Task not found"
        assert task.status == "review"

    def test_remove_assignee_and_history(self, machine, factory, db):
        project = factory.project()
        task = factory.task(project, status="completed", assigned_to="u1")
        machine.transition(task.id, "completed")

        machine.bulk_transition(
            [task.id], "label", remove_assignee=True, remove_stage_history=True
        )

        db.refresh(task)
        assert task.assigned_to is None
        assert task.completed_at is None
        assert task.status == "label"

    def test_request_validated_before_mutation(self, machine, factory, db):
        project = factory.project()
        label = factory.label(project)
        task = factory.task(project)
        factory.annotation(task, label)

        with pytest.raises(ValidationError):
            machine.bulk_transition([task.id], "nope", remove_annotations=True)
        with pytest.raises(ValidationError):
            machine.bulk_transition([], "review")

        assert db.query(Annotation).count() == 1


class TestAssignAndTime:
    def test_assign_notifies(self, machine, factory, notifier, clock):
        project = factory.project()
        task = factory.task(project)

        machine.assign(task.id, "labeler-7")

        assert task.assigned_to == "labeler-7"
        assert task.assigned_at == clock.now
        assert notifier.sent[0]["user_id"] == "labeler-7"
        assert notifier.sent[0]["type"] == "task_assigned"

    def test_record_time_accumulates(self, machine, factory, db):
        project = factory.project()
        task = factory.task(project)

        machine.record_time(task.id, 30)
        machine.record_time(task.id, 12)

        db.refresh(task)
        assert task.time_spent == 42

    def test_record_time_rejects_negative(self, machine, factory):
        project = factory.project()
        task = factory.task(project)
        with pytest.raises(ValidationError):
            machine.record_time(task.id, -1)

    def test_record_time_missing_task(self, machine):
        with pytest.raises(NotFoundError):
            machine.record_time(404, 5)


class TestQueries:
    def test_queue_stats(self, machine, factory):
        project = factory.project()
        tasks = [factory.task(project, status="label", name=f"{i}.png") for i in range(3)]
        factory.task(project, status="review", name="r.png")
        factory.task(project, status="completed", name="c.png")
        factory.task(project, status="prelabel", name="p.png")

        stats = machine.get_queue_stats(project.id, current_task_id=tasks[1].id)

        assert (stats.label, stats.review, stats.completed) == (3, 1, 1)
        assert stats.active == 4
        assert stats.total == 6
        assert stats.current_task_number == 2
        assert stats.tasks_remaining == 2

    def test_next_task_prefers_priority_then_age(self, machine, factory):
        project = factory.project()
        factory.task(project, name="old.png")
        urgent = factory.task(project, name="urgent.png", priority=5)
        factory.task(project, name="taken.png", priority=9, assigned_to="u1")

        assert machine.next_task(project.id).id == urgent.id

    def test_next_task_none(self, machine, factory):
        project = factory.project()
        factory.task(project, status="completed")
        assert machine.next_task(project.id) is None

    def test_sequence_neighbours(self, machine, factory):
        project = factory.project()
        a = factory.task(project, name="a.png")
        factory.task(project, status="completed", name="done.png")
        b = factory.task(project, status="review", name="b.png")

        assert machine.next_in_sequence(project.id, a.id) == b.id
        assert machine.previous_in_sequence(project.id, b.id) == a.id
        assert machine.previous_in_sequence(project.id, a.id) is None
        assert machine.next_in_sequence(project.id, b.id) is None

    def test_fetch(self, machine, factory):
        project = factory.project()
        task = factory.task(project)

        assert machine.fetch(task.id).value.id == task.id
        missing = machine.fetch(12345)
        assert not missing.ok
        assert "not found" in missing.error

    def test_create_task_for_asset_is_queued(self, machine, factory, queue, db):
        project = factory.project()
        existing = factory.task(project)

        task = machine.create_task_for_asset(existing.asset_id, priority=2)

        assert task.status == "label"
        assert task.queued_at is not None
        assert queue.jobs[-1][2]["task_id"] == task.id


class TestQueueRebuild:
    def test_rebuild_from_persisted_status(self, db, factory, queue):
        project = factory.project()
        factory.task(project, status="label", name="a.png")
        urgent = factory.task(project, status="review", name="b.png", priority=4)
        factory.task(project, status="completed", name="c.png")
        factory.task(project, status="prelabel", name="d.png")

        counts = QueueRouter(queue).rebuild(db, project.id)

        assert counts == {"label-queue": 1, "review-queue": 1, "completed-queue": 1}
        assert queue.jobs[0][2]["task_id"] == urgent.id

    def test_strict_route_raises_on_broker_failure(self, queue):
        queue.fail = True
        router = QueueRouter(queue)

        assert router.route(1, "label") == "label-queue"
        with pytest.raises(StorageError):
            router.route(1, "label", strict=True)
