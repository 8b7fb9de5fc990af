"""
Job service for tracking many jobs.

Holds the collaborators shared by every tracker and keeps an index of
live trackers. Jobs share nothing but the timer registry.
"""
from jobwatch.logging_config import get_logger
from jobwatch.models.render import RenderCallbacks
from jobwatch.services.credentials import CredentialProvider
from jobwatch.services.error_classifier import ErrorClassifier
from jobwatch.services.job_tracker import JobTracker
from jobwatch.services.notifiers import ChangeNotifier
from jobwatch.services.submission_client import SubmissionClient, SubmissionPayload
from jobwatch.services.timer_registry import TimerRegistry
from jobwatch.services.upload_client import UploadClient

logger = get_logger(component="job_service")


class JobService:
    """Factory and index for job trackers."""

    def __init__(
        self,
        submission_client: SubmissionClient,
        notifier: ChangeNotifier,
        credentials: CredentialProvider,
        timers: TimerRegistry | None = None,
        upload_client: UploadClient | None = None,
        classifier: ErrorClassifier | None = None,
        threshold: float | None = None,
    ):
        self.submission_client = submission_client
        self.notifier = notifier
        self.credentials = credentials
        self.timers = timers if timers is not None else TimerRegistry()
        self.upload_client = upload_client
        self.classifier = classifier
        self.threshold = threshold
        self._trackers: dict[str, JobTracker] = {}

    def create_job(
        self,
        payload: SubmissionPayload,
        callbacks: RenderCallbacks | None = None,
        **overrides,
    ) -> JobTracker:
        """
        Create a tracker in IDLE state.

        Args:
            payload: File to analyze
            callbacks: UI hooks for this job
            overrides: Per-job JobTracker options (threshold, timeouts, job_id)

        Returns:
            New JobTracker, not yet started
        """
        overrides.setdefault("threshold", self.threshold)
        tracker = JobTracker(
            payload,
            submission_client=self.submission_client,
            notifier=self.notifier,
            timers=self.timers,
            credentials=self.credentials,
            callbacks=callbacks,
            upload_client=self.upload_client,
            classifier=self.classifier,
            **overrides,
        )
        if tracker.job_id in self._trackers:
            raise ValueError(f"Job id already tracked: {tracker.job_id}")
        self._trackers[tracker.job_id] = tracker
        logger.info("job_created", job_id=tracker.job_id)
        return tracker

    async def submit(
        self,
        payload: SubmissionPayload,
        callbacks: RenderCallbacks | None = None,
        **overrides,
    ) -> JobTracker:
        """Create a tracker and start it."""
        tracker = self.create_job(payload, callbacks, **overrides)
        await tracker.start()
        return tracker

    def get_job(self, job_id: str) -> JobTracker | None:
        """Get tracker by job ID."""
        return self._trackers.get(job_id)

    def active_jobs(self) -> list[JobTracker]:
        """Trackers that have not reached a terminal state."""
        return [tracker for tracker in self._trackers.values() if not tracker.is_terminal]

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a tracked job.

        Returns:
            True if the job was live and is now cancelled
        """
        tracker = self._trackers.get(job_id)
        if tracker is None:
            return False
        return tracker.cancel()

    def cancel_all(self) -> int:
        """Cancel every live job; returns how many were cancelled."""
        return sum(1 for tracker in self.active_jobs() if tracker.cancel())

    def forget_finished(self) -> int:
        """Drop terminal trackers from the index."""
        finished = [job_id for job_id, tracker in self._trackers.items() if tracker.is_terminal]
        for job_id in finished:
            del self._trackers[job_id]
        return len(finished)
