"""
Job state machine.

Tracks one submitted job end to end:

    IDLE -> SUBMITTING -> QUEUED -> PROCESSING -> DONE | ERROR

plus TIMED_OUT (analysis timer, from QUEUED/PROCESSING), UPLOAD_TIMED_OUT
(upload timer, from SUBMITTING) and CANCELLED (caller teardown).

INVARIANT: the first terminal state wins. Every input (submit result,
snapshot, timer expiry, channel error) is handled under the job's lock
and dropped once the job is terminal. Entering a terminal state cancels
both timers and releases the subscription in one step.
"""
import asyncio
import threading
from dataclasses import dataclass, field

from jobwatch import metrics
from jobwatch.config import settings
from jobwatch.errors import (
    ChannelError,
    IncompleteResultError,
    InvalidStateTransitionError,
    JobTimeoutError,
    JobWatchError,
    SessionExpiredError,
    SubmitError,
)
from jobwatch.logging_config import get_logger
from jobwatch.models.job import (
    TERMINAL_TRACKER_STATES,
    AnalysisResult,
    JobSnapshot,
    JobStatus,
    TimerKind,
    TrackerState,
)
from jobwatch.models.render import (
    DoneEvent,
    ErrorEvent,
    IncompleteEvent,
    ProcessingEvent,
    QueuedEvent,
    RenderCallbacks,
    RenderDispatcher,
    RenderEvent,
    TimeoutEvent,
)
from jobwatch.sentry_config import capture_exception, capture_message
from jobwatch.services.change_channel import ChangeSubscription
from jobwatch.services.credentials import CredentialProvider
from jobwatch.services.error_classifier import (
    ErrorCategory,
    ErrorClassifier,
    FailureInfo,
    classifier as default_classifier,
)
from jobwatch.services.notifiers import ChangeNotifier
from jobwatch.services.secondary_gate import SecondaryGate
from jobwatch.services.submission_client import SubmissionClient, SubmissionPayload, new_job_id
from jobwatch.services.timer_registry import TimerRegistry
from jobwatch.services.upload_client import UploadClient

logger = get_logger(component="job_tracker")

# Categories worth an error-tracking report
REPORTED_CATEGORIES = frozenset({
    ErrorCategory.SERVER_FAULT,
    ErrorCategory.CHANNEL_LOST,
    ErrorCategory.UNKNOWN,
})

# Debug log event per kind of late input
LATE_INPUT_EVENTS = {
    "submit": "late_submit_discarded",
    "upload_timer": "late_timer_dropped",
    "analysis_timer": "late_timer_dropped",
    "snapshot": "late_snapshot_dropped",
    "channel_error": "late_channel_error_dropped",
}


@dataclass
class JobContext:
    """Everything owned by one tracked job."""
    job_id: str
    payload: SubmissionPayload
    threshold: float
    state: TrackerState = TrackerState.IDLE
    status: JobStatus | None = None
    result: AnalysisResult | None = None
    error: str | None = None
    failure: JobWatchError | None = None
    owner_uid: str | None = None
    subscription: ChangeSubscription | None = None
    history: list[TrackerState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_TRACKER_STATES

    @property
    def qualifies(self) -> bool:
        return self.result is not None and self.result.qualifies(self.threshold)


class JobTracker:
    """Single-job actor driving submission, snapshots and timers."""

    def __init__(
        self,
        payload: SubmissionPayload,
        *,
        submission_client: SubmissionClient,
        notifier: ChangeNotifier,
        timers: TimerRegistry,
        credentials: CredentialProvider,
        callbacks: RenderCallbacks | None = None,
        upload_client: UploadClient | None = None,
        classifier: ErrorClassifier | None = None,
        job_id: str | None = None,
        threshold: float | None = None,
        upload_timeout: float | None = None,
        analysis_timeout: float | None = None,
        collection: str | None = None,
    ):
        self.ctx = JobContext(
            job_id=job_id or new_job_id(),
            payload=payload,
            threshold=threshold if threshold is not None else settings.QUALIFY_THRESHOLD,
        )
        self.submission_client = submission_client
        self.notifier = notifier
        self.timers = timers
        self.credentials = credentials
        self.dispatcher = RenderDispatcher(callbacks)
        self.classifier = classifier or default_classifier
        self.upload_timeout = upload_timeout if upload_timeout is not None else settings.UPLOAD_TIMER_SECONDS
        self.analysis_timeout = analysis_timeout if analysis_timeout is not None else settings.ANALYSIS_TIMER_SECONDS
        self.collection = collection or settings.JOBS_COLLECTION
        self.gate = SecondaryGate(self.ctx.job_id, upload_client, self._emit, self.classifier)
        self._lock = threading.RLock()
        self._finished = asyncio.Event()
        self.log = logger.bind(job_id=self.ctx.job_id)

    @property
    def job_id(self) -> str:
        return self.ctx.job_id

    @property
    def state(self) -> TrackerState:
        return self.ctx.state

    @property
    def is_terminal(self) -> bool:
        return self.ctx.is_terminal

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------

    async def start(self) -> TrackerState:
        """
        Submit the job and start observing it.

        Returns once the submission call has resolved; use wait() for the
        terminal state.
        """
        with self._lock:
            if self.ctx.state != TrackerState.IDLE:
                raise InvalidStateTransitionError("job", self.ctx.state.value, "start")
            metrics.jobs_active.inc()

            identity = self.credentials.current_identity()
            if identity is None:
                self.log.warning("submit_blocked", reason="no_identity")
                self._fail(
                    FailureInfo(session_expired=True, raw_message="No valid session"),
                    SessionExpiredError("No valid session"),
                )
                return self.ctx.state

            self.ctx.owner_uid = identity.uid
            self._transition(TrackerState.SUBMITTING)
            self.timers.arm(self.job_id, TimerKind.UPLOAD, self.upload_timeout, self._on_upload_timeout)

        try:
            await self.submission_client.submit(self.job_id, self.ctx.payload, identity)
        except SubmitError as e:
            self._on_submit_failed(e)
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception as e:
            self._on_submit_crashed(e)
            raise
        else:
            self._on_submit_succeeded()
        return self.ctx.state

    async def wait(self) -> TrackerState:
        """Wait until the job reaches a terminal state."""
        await self._finished.wait()
        return self.ctx.state

    async def run(self) -> TrackerState:
        await self.start()
        return await self.wait()

    def outcome(self) -> AnalysisResult:
        """
        Return the finished result, or raise the error that ended the job.

        Raises IncompleteResultError, JobTimeoutError, SessionExpiredError,
        SubmitError, ChannelError or JobWatchError depending on how the job
        ended, and InvalidStateTransitionError if it has not finished or was
        cancelled.
        """
        with self._lock:
            if self.ctx.failure is not None:
                raise self.ctx.failure
            if self.ctx.state != TrackerState.DONE or self.ctx.result is None:
                raise InvalidStateTransitionError("job", self.ctx.state.value, "read result of")
            return self.ctx.result

    def cancel(self) -> bool:
        """
        Tear the job down: unsubscribe and cancel both timers.

        An in-flight submission is not aborted; its result is discarded.
        Returns False if the job was already terminal.
        """
        with self._lock:
            if self.ctx.is_terminal:
                return False
            self._enter_terminal(TrackerState.CANCELLED, outcome="cancelled")
        return True

    async def publish(self, payload: SubmissionPayload | None = None) -> str:
        """Invoke the secondary action with the job's payload by default."""
        return await self.gate.invoke(payload or self.ctx.payload)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _on_submit_succeeded(self) -> None:
        with self._lock:
            if self.ctx.state != TrackerState.SUBMITTING:
                self._drop("submit", state=self.ctx.state.value)
                return

            self.timers.cancel_all(self.job_id)
            self.ctx.status = JobStatus.QUEUED
            self._transition(TrackerState.QUEUED)
            metrics.jobs_submitted.inc()
            self._emit(QueuedEvent(job_id=self.job_id))

            self.timers.arm(self.job_id, TimerKind.ANALYSIS, self.analysis_timeout, self._on_analysis_timeout)
            self.ctx.subscription = ChangeSubscription(
                self.notifier,
                self.collection,
                self.job_id,
                self._on_snapshot,
                self._on_channel_error,
            )
            self.ctx.subscription.start()

    def _on_submit_failed(self, error: SubmitError) -> None:
        with self._lock:
            if self.ctx.state != TrackerState.SUBMITTING:
                self._drop("submit", state=self.ctx.state.value)
                return
            self._fail(FailureInfo.from_submit_error(error), error)

    def _on_submit_crashed(self, error: Exception) -> None:
        with self._lock:
            if self.ctx.state != TrackerState.SUBMITTING:
                self._drop("submit", state=self.ctx.state.value)
                return
            self.log.error("submit_crashed", error=repr(error))
            failure = JobWatchError(f"Submission failed unexpectedly: {error!r}")
            failure.__cause__ = error
            self._fail(FailureInfo(raw_message=str(error)), failure)

    def _on_upload_timeout(self) -> None:
        with self._lock:
            if self.ctx.state != TrackerState.SUBMITTING:
                self._drop("upload_timer", state=self.ctx.state.value)
                return
            self.ctx.failure = JobTimeoutError(self.job_id, TimerKind.UPLOAD.value)
            self._enter_terminal(TrackerState.UPLOAD_TIMED_OUT, outcome="upload_timed_out")
            self._emit(TimeoutEvent(job_id=self.job_id, timer=TimerKind.UPLOAD))

    def _on_analysis_timeout(self) -> None:
        with self._lock:
            if self.ctx.state not in (TrackerState.QUEUED, TrackerState.PROCESSING):
                self._drop("analysis_timer", state=self.ctx.state.value)
                return
            self.ctx.failure = JobTimeoutError(self.job_id, TimerKind.ANALYSIS.value)
            self._enter_terminal(TrackerState.TIMED_OUT, outcome="timed_out")
            self._emit(TimeoutEvent(job_id=self.job_id, timer=TimerKind.ANALYSIS))

    def _on_channel_error(self, error: ChannelError) -> None:
        with self._lock:
            if self.ctx.is_terminal:
                self._drop("channel_error", state=self.ctx.state.value)
                return
            self._fail(FailureInfo(channel_lost=True, raw_message=str(error)), error)

    def _on_snapshot(self, snapshot: JobSnapshot) -> None:
        with self._lock:
            if self.ctx.is_terminal:
                self._drop("snapshot", status=snapshot.status.value if snapshot.status else None)
                return
            if self.ctx.state not in (TrackerState.QUEUED, TrackerState.PROCESSING):
                self._drop("snapshot", state=self.ctx.state.value)
                return

            if snapshot.status == JobStatus.QUEUED:
                if self.ctx.state == TrackerState.PROCESSING:
                    self.log.debug("stale_snapshot_ignored", status=snapshot.status.value)
                return

            if snapshot.status == JobStatus.PROCESSING:
                if self.ctx.state == TrackerState.QUEUED:
                    self.ctx.status = JobStatus.PROCESSING
                    self._transition(TrackerState.PROCESSING)
                    self._emit(ProcessingEvent(job_id=self.job_id))
                return

            if snapshot.status == JobStatus.DONE:
                self._complete(snapshot.result or AnalysisResult())
                return

            if snapshot.status == JobStatus.ERROR:
                self.ctx.status = JobStatus.ERROR
                self.ctx.error = snapshot.error
                self._fail(FailureInfo(raw_message=snapshot.error), JobWatchError(snapshot.error or "Job failed"))

    # ------------------------------------------------------------------
    # Terminal paths
    # ------------------------------------------------------------------

    def _complete(self, result: AnalysisResult) -> None:
        self.ctx.status = JobStatus.DONE
        self.ctx.result = result

        if result.is_empty:
            self.ctx.failure = IncompleteResultError(self.job_id)
            self._enter_terminal(TrackerState.DONE, outcome="incomplete")
            self.log.warning("job_done_without_result")
            self._emit(IncompleteEvent(job_id=self.job_id))
            return

        self._enter_terminal(TrackerState.DONE, outcome="done")
        self._emit(DoneEvent(
            job_id=self.job_id,
            result=result,
            qualifies=self.ctx.qualifies,
            threshold=self.ctx.threshold,
        ))
        self.gate.promote(result, self.ctx.threshold)

    def _fail(self, info: FailureInfo, failure: JobWatchError) -> None:
        self.ctx.failure = failure
        category = self.classifier.classify(info)
        self._enter_terminal(TrackerState.ERROR, outcome="error")
        self.log.warning("job_failed", category=category.value, raw_message=info.raw_message)
        if category in REPORTED_CATEGORIES:
            capture_message(f"job_failed:{category.value}", level="warning", job_id=self.job_id)
        self._emit(ErrorEvent(job_id=self.job_id, category=category, raw_message=info.raw_message))

    def _enter_terminal(self, state: TrackerState, outcome: str) -> None:
        self._transition(state)
        self.timers.cancel_all(self.job_id)
        if self.ctx.subscription is not None:
            self.ctx.subscription.unsubscribe()
        metrics.jobs_terminal.labels(outcome=outcome).inc()
        metrics.jobs_active.dec()
        self._finished.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, state: TrackerState) -> None:
        self.log.info("job_transition", from_state=self.ctx.state.value, to_state=state.value)
        self.ctx.history.append(self.ctx.state)
        self.ctx.state = state

    def _drop(self, source: str, **details) -> None:
        metrics.late_events_dropped.labels(source=source).inc()
        self.log.debug(LATE_INPUT_EVENTS[source], source=source, **details)

    def _emit(self, event: RenderEvent) -> None:
        try:
            self.dispatcher.dispatch(event)
        except Exception:
            self.log.exception("render_callback_failed", kind=event.kind)
            capture_exception(job_id=self.job_id)
