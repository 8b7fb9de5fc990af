"""
Job state machine tests.

Drive a tracker with the in-memory notifier and the manual clock and
check the render callbacks it emits.
"""
import asyncio

import pytest
from structlog.testing import capture_logs

from jobwatch.errors import (
    GateLockedError,
    IncompleteResultError,
    InvalidStateTransitionError,
    JobTimeoutError,
    JobWatchError,
    SessionExpiredError,
    SubmitError,
)
from jobwatch.models.job import JobSnapshot, TimerKind, TrackerState
from jobwatch.models.render import RenderCallbacks
from jobwatch.models.secondary import SecondaryPhase
from jobwatch.services.credentials import StaticCredentialProvider
from jobwatch.services.error_classifier import ErrorCategory

COLLECTION = "analyses"

DONE_DOC = {
    "status": "done",
    "result": {
        "score": 20,
        "summary": "Clear structure and good pacing.",
        "findings": [
            {"ruleId": "intro", "ok": True, "note": "Objectives stated"},
            {"ruleId": "closing", "ok": False},
        ],
        "suggestions": ["Add a recap slide"],
    },
}


async def test_processing_then_done_scenario(make_tracker, notifier, clock, timers, callbacks):
    tracker = make_tracker()

    assert await tracker.start() == TrackerState.QUEUED
    assert timers.get(tracker.job_id, TimerKind.ANALYSIS) is not None

    clock.advance(5)
    notifier.set(COLLECTION, tracker.job_id, {"status": "processing"})
    clock.advance(35)
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert callbacks.kinds == ["queued", "processing", "done", "eligible"]
    done = callbacks.events[2]
    assert done.result.score == 20
    assert done.qualifies is True
    assert timers.get(tracker.job_id, TimerKind.ANALYSIS) is None
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0

    clock.advance(2000)
    assert "timeout" not in callbacks.kinds
    assert await tracker.wait() == TrackerState.DONE
    assert tracker.gate.phase == SecondaryPhase.ELIGIBLE


async def test_analysis_timeout_scenario(make_tracker, notifier, clock, timers, callbacks):
    tracker = make_tracker()
    await tracker.start()

    clock.advance(900)

    assert callbacks.kinds == ["queued", "timeout"]
    assert callbacks.events[-1].timer == TimerKind.ANALYSIS
    assert tracker.state == TrackerState.TIMED_OUT
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0

    clock.advance(1)
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)
    assert callbacks.kinds == ["queued", "timeout"]
    assert len(timers) == 0


async def test_upload_timer_beats_late_submit_success(make_tracker, submission_client, notifier, clock, timers, callbacks):
    submission_client.gate = asyncio.Event()
    tracker = make_tracker()

    task = asyncio.create_task(tracker.start())
    await asyncio.sleep(0)
    assert tracker.state == TrackerState.SUBMITTING

    clock.advance(600)
    assert tracker.state == TrackerState.UPLOAD_TIMED_OUT
    assert callbacks.kinds == ["timeout"]
    assert callbacks.events[0].timer == TimerKind.UPLOAD

    submission_client.gate.set()
    assert await task == TrackerState.UPLOAD_TIMED_OUT
    assert callbacks.kinds == ["timeout"]
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0
    assert len(timers) == 0


async def test_submit_failure_is_classified_without_subscription(make_tracker, submission_client, notifier, timers, callbacks):
    submission_client.error = SubmitError("HTTP 413: too large", status_code=413, body="too large")
    tracker = make_tracker()

    assert await tracker.start() == TrackerState.ERROR

    assert callbacks.kinds == ["error"]
    assert callbacks.events[0].category == ErrorCategory.PAYLOAD_TOO_LARGE
    assert callbacks.events[0].raw_message == "too large"
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0
    assert len(timers) == 0


async def test_missing_identity_blocks_submission(make_tracker, submission_client, callbacks):
    tracker = make_tracker(credentials=StaticCredentialProvider(None))

    assert await tracker.start() == TrackerState.ERROR

    assert submission_client.calls == []
    assert callbacks.events[0].category == ErrorCategory.SESSION_EXPIRED


async def test_owner_is_stamped_from_identity(make_tracker, submission_client, identity):
    tracker = make_tracker()
    await tracker.start()

    assert submission_client.calls[0][2] == identity
    assert tracker.ctx.owner_uid == "user-1"


async def test_duplicate_snapshots_render_once(make_tracker, notifier, callbacks):
    tracker = make_tracker()
    await tracker.start()

    notifier.set(COLLECTION, tracker.job_id, {"status": "queued"})
    notifier.set(COLLECTION, tracker.job_id, {"status": "processing"})
    notifier.set(COLLECTION, tracker.job_id, {"status": "processing"})
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)
    # A retried delivery that bypasses the channel wrapper
    tracker._on_snapshot(JobSnapshot.from_document(tracker.job_id, DONE_DOC))

    assert callbacks.kinds == ["queued", "processing", "done", "eligible"]


async def test_done_straight_from_queued(make_tracker, notifier, callbacks):
    tracker = make_tracker()
    await tracker.start()

    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert callbacks.kinds == ["queued", "done", "eligible"]


async def test_error_snapshot_is_classified(make_tracker, notifier, clock, callbacks):
    tracker = make_tracker()
    await tracker.start()

    notifier.set(COLLECTION, tracker.job_id, {"status": "error", "error": "Worker ran out of memory"})
    clock.advance(1000)

    assert callbacks.kinds == ["queued", "error"]
    assert callbacks.events[-1].category == ErrorCategory.RESOURCE_EXHAUSTED
    assert callbacks.events[-1].raw_message == "Worker ran out of memory"
    assert tracker.ctx.error == "Worker ran out of memory"
    assert tracker.gate.phase == SecondaryPhase.LOCKED


async def test_empty_done_result_is_incomplete(make_tracker, notifier, callbacks):
    tracker = make_tracker()
    await tracker.start()

    notifier.set(COLLECTION, tracker.job_id, {"status": "done", "result": {}})

    assert callbacks.kinds == ["queued", "incomplete"]
    assert tracker.state == TrackerState.DONE
    assert tracker.gate.phase == SecondaryPhase.LOCKED


async def test_low_score_keeps_gate_locked(make_tracker, notifier, upload_client, callbacks):
    tracker = make_tracker()
    await tracker.start()
    notifier.set(COLLECTION, tracker.job_id, {"status": "done", "result": {"score": 5, "summary": "Weak"}})

    assert callbacks.kinds == ["queued", "done"]
    assert callbacks.events[-1].qualifies is False
    with pytest.raises(GateLockedError):
        await tracker.publish()
    assert upload_client.calls == []


async def test_channel_error_renders_connection_failure(make_tracker, notifier, clock, timers, callbacks):
    tracker = make_tracker()
    await tracker.start()

    notifier.fail(COLLECTION, tracker.job_id, ConnectionError("stream reset"))
    clock.advance(1000)

    assert callbacks.kinds == ["queued", "error"]
    assert callbacks.events[-1].category == ErrorCategory.CHANNEL_LOST
    assert len(timers) == 0


async def test_cancel_tears_down_once(make_tracker, notifier, clock, timers, callbacks):
    tracker = make_tracker()
    await tracker.start()

    assert tracker.cancel() is True
    assert tracker.cancel() is False

    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)
    clock.advance(1000)

    assert tracker.state == TrackerState.CANCELLED
    assert callbacks.kinds == ["queued"]
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0
    assert len(timers) == 0


async def test_cancel_while_submitting_discards_result(make_tracker, submission_client, notifier, timers, callbacks):
    submission_client.gate = asyncio.Event()
    tracker = make_tracker()
    task = asyncio.create_task(tracker.start())
    await asyncio.sleep(0)

    tracker.cancel()
    submission_client.gate.set()

    assert await task == TrackerState.CANCELLED
    assert len(submission_client.calls) == 1
    assert callbacks.kinds == []
    assert notifier.listener_count(COLLECTION, tracker.job_id) == 0
    assert len(timers) == 0


async def test_start_twice_is_rejected(make_tracker):
    tracker = make_tracker()
    await tracker.start()

    with pytest.raises(InvalidStateTransitionError):
        await tracker.start()


async def test_failing_render_callback_does_not_break_tracking(make_tracker, notifier):
    class Exploding(RenderCallbacks):
        def __init__(self):
            self.done = []

        def on_processing(self, event):
            raise RuntimeError("ui crashed")

        def on_done(self, event):
            self.done.append(event)

    exploding = Exploding()
    tracker = make_tracker(callbacks=exploding)
    await tracker.start()

    notifier.set(COLLECTION, tracker.job_id, {"status": "processing"})
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert tracker.state == TrackerState.DONE
    assert len(exploding.done) == 1


async def test_concurrent_jobs_are_independent(make_tracker, notifier, clock, callbacks):
    first = make_tracker()
    second = make_tracker()
    await first.start()
    await second.start()

    notifier.set(COLLECTION, first.job_id, DONE_DOC)
    clock.advance(900)

    assert first.state == TrackerState.DONE
    assert second.state == TrackerState.TIMED_OUT


async def test_outcome_returns_result_after_done(make_tracker, notifier):
    tracker = make_tracker()
    await tracker.start()

    with pytest.raises(InvalidStateTransitionError):
        tracker.outcome()

    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert tracker.outcome().score == 20


async def test_outcome_raises_what_ended_the_job(make_tracker, submission_client, notifier, clock):
    timed_out = make_tracker()
    await timed_out.start()
    clock.advance(900)
    with pytest.raises(JobTimeoutError) as excinfo:
        timed_out.outcome()
    assert excinfo.value.kind == "analysis"

    incomplete = make_tracker()
    await incomplete.start()
    notifier.set(COLLECTION, incomplete.job_id, {"status": "done", "result": {}})
    with pytest.raises(IncompleteResultError):
        incomplete.outcome()

    failed = make_tracker()
    await failed.start()
    notifier.set(COLLECTION, failed.job_id, {"status": "error", "error": "codec"})
    with pytest.raises(JobWatchError, match="codec"):
        failed.outcome()

    no_session = make_tracker(credentials=StaticCredentialProvider(None))
    await no_session.start()
    with pytest.raises(SessionExpiredError):
        no_session.outcome()

    submission_client.error = SubmitError("HTTP 500", status_code=500)
    rejected = make_tracker()
    await rejected.start()
    with pytest.raises(SubmitError):
        rejected.outcome()


async def test_reported_failures_still_render(make_tracker, submission_client, notifier, callbacks, sentry_events):
    submission_client.error = SubmitError("HTTP 500", status_code=500, body="boom")
    rejected = make_tracker()
    assert await rejected.start() == TrackerState.ERROR

    submission_client.error = None
    dropped = make_tracker()
    await dropped.start()
    notifier.fail(COLLECTION, dropped.job_id, ConnectionError("stream reset"))

    errors = [event for event in callbacks.events if event.kind == "error"]
    assert [event.category for event in errors] == [ErrorCategory.SERVER_FAULT, ErrorCategory.CHANNEL_LOST]
    assert sentry_events == [
        ("warning", "job_failed:server_fault"),
        ("warning", "job_failed:channel_lost"),
    ]


async def test_crashing_render_callback_is_reported(make_tracker, notifier, sentry_events):
    class Exploding(RenderCallbacks):
        def on_queued(self, event):
            raise RuntimeError("ui crashed")

    tracker = make_tracker(callbacks=Exploding())
    await tracker.start()
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert tracker.state == TrackerState.DONE
    assert sentry_events == [("exception", None)]


async def test_unexpected_submit_exception_ends_job(make_tracker, submission_client, notifier, clock, timers, callbacks):
    class Boom(Exception):
        pass

    submission_client.error = Boom("client bug")
    tracker = make_tracker()

    with pytest.raises(Boom):
        await tracker.start()

    assert tracker.state == TrackerState.ERROR
    assert callbacks.kinds == ["error"]
    assert callbacks.events[0].category == ErrorCategory.UNKNOWN
    assert len(timers) == 0
    with pytest.raises(JobWatchError) as excinfo:
        tracker.outcome()
    assert isinstance(excinfo.value.__cause__, Boom)

    clock.advance(601)
    assert callbacks.kinds == ["error"]
    assert tracker.state == TrackerState.ERROR


async def test_cancelled_submit_tears_down(make_tracker, submission_client, notifier, timers, callbacks):
    submission_client.gate = asyncio.Event()
    tracker = make_tracker()
    task = asyncio.create_task(tracker.start())
    await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert tracker.state == TrackerState.CANCELLED
    assert callbacks.kinds == []
    assert len(timers) == 0


async def test_late_inputs_are_logged_by_kind(make_tracker, submission_client, notifier, clock):
    submission_client.gate = asyncio.Event()
    tracker = make_tracker()
    task = asyncio.create_task(tracker.start())
    await asyncio.sleep(0)

    with capture_logs() as logs:
        clock.advance(600)
        submission_client.gate.set()
        await task
        tracker._on_snapshot(JobSnapshot.from_document(tracker.job_id, DONE_DOC))
        tracker._on_analysis_timeout()

    events = [entry["event"] for entry in logs]
    assert "late_submit_discarded" in events
    assert "late_snapshot_dropped" in events
    assert "late_timer_dropped" in events


async def test_history_records_every_transition(make_tracker, notifier):
    tracker = make_tracker()
    await tracker.start()
    notifier.set(COLLECTION, tracker.job_id, {"status": "processing"})
    notifier.set(COLLECTION, tracker.job_id, DONE_DOC)

    assert tracker.ctx.history == [
        TrackerState.IDLE,
        TrackerState.SUBMITTING,
        TrackerState.QUEUED,
        TrackerState.PROCESSING,
    ]
