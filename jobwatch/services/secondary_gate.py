"""
Secondary-action gate.

Unlocks the publish action once a job finishes with a qualifying score
and drives the publish sub-job: LOCKED -> ELIGIBLE -> UPLOADING -> UPLOADED.
A failed upload drops back to ELIGIBLE and may be invoked again.
"""
import threading
from typing import Callable

from jobwatch import metrics
from jobwatch.errors import GateLockedError, UploadError, UploadInProgressError
from jobwatch.logging_config import get_logger
from jobwatch.models.job import AnalysisResult
from jobwatch.models.render import (
    EligibleEvent,
    RenderEvent,
    UploadFailedEvent,
    UploadedEvent,
    UploadingEvent,
)
from jobwatch.models.secondary import SecondaryJob, SecondaryPhase
from jobwatch.services.error_classifier import ErrorClassifier, FailureInfo, classifier as default_classifier
from jobwatch.services.submission_client import SubmissionPayload
from jobwatch.services.upload_client import UploadClient

logger = get_logger(component="secondary_gate")


def evaluate(result: AnalysisResult | None, threshold: float) -> SecondaryPhase:
    """Pure eligibility check on a DONE result."""
    if result is not None and result.qualifies(threshold):
        return SecondaryPhase.ELIGIBLE
    return SecondaryPhase.LOCKED


class SecondaryGate:
    """Publish sub-job of one analysis job."""

    def __init__(
        self,
        job_id: str,
        upload_client: UploadClient | None,
        emit: Callable[[RenderEvent], None],
        classifier: ErrorClassifier | None = None,
    ):
        self.job = SecondaryJob(job_id=job_id)
        self.upload_client = upload_client
        self.emit = emit
        self.classifier = classifier or default_classifier
        self._lock = threading.Lock()
        self.log = logger.bind(job_id=job_id)

    @property
    def phase(self) -> SecondaryPhase:
        return self.job.phase

    @property
    def target_link(self) -> str | None:
        return self.job.target_link

    def promote(self, result: AnalysisResult | None, threshold: float) -> bool:
        """
        Unlock the gate if the result qualifies. Called once, on DONE.

        Returns True if the gate became eligible.
        """
        with self._lock:
            if self.job.phase != SecondaryPhase.LOCKED:
                return False
            if evaluate(result, threshold) != SecondaryPhase.ELIGIBLE:
                self.log.info("gate_stays_locked", score=result.score if result else None, threshold=threshold)
                return False
            self.job.phase = SecondaryPhase.ELIGIBLE

        self.log.info("gate_eligible", score=result.score, threshold=threshold)
        self.emit(EligibleEvent(job_id=self.job.job_id))
        return True

    async def invoke(self, payload: SubmissionPayload) -> str:
        """
        Run the publish upload.

        Rejected before any remote call when the gate is not ELIGIBLE:
        UploadInProgressError while UPLOADING, GateLockedError otherwise.

        Returns:
            The target link

        Raises:
            UploadError: the upload failed; the gate is ELIGIBLE again
        """
        with self._lock:
            if self.job.phase == SecondaryPhase.UPLOADING:
                self.log.info("invoke_rejected", reason="upload_in_progress")
                raise UploadInProgressError(self.job.job_id)
            if self.job.phase != SecondaryPhase.ELIGIBLE:
                self.log.info("invoke_rejected", phase=self.job.phase.value)
                raise GateLockedError(self.job.job_id, self.job.phase.value)
            if self.upload_client is None:
                raise GateLockedError(self.job.job_id, "unconfigured")
            self.job.phase = SecondaryPhase.UPLOADING
            self.job.attempts += 1

        self.emit(UploadingEvent(job_id=self.job.job_id))

        link = None
        try:
            link = await self.upload_client.upload(self.job.job_id, payload)
        except UploadError as e:
            category = self.classifier.classify(FailureInfo.from_submit_error(e))
            self.log.warning("upload_failed", category=category.value, error=str(e))
            metrics.secondary_uploads.labels(outcome="failed").inc()
            with self._lock:
                self.job.phase = SecondaryPhase.ELIGIBLE
            self.emit(UploadFailedEvent(
                job_id=self.job.job_id, category=category, raw_message=e.body or str(e)
            ))
            raise
        finally:
            if link is None:
                with self._lock:
                    if self.job.phase == SecondaryPhase.UPLOADING:
                        self.job.phase = SecondaryPhase.ELIGIBLE

        with self._lock:
            self.job.phase = SecondaryPhase.UPLOADED
            self.job.target_link = link
        metrics.secondary_uploads.labels(outcome="uploaded").inc()
        self.emit(UploadedEvent(job_id=self.job.job_id, link=link))
        return link
