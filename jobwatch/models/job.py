"""
Job model for remote analysis tracking.

A Job is created QUEUED at submission time and only ever moves forward
as snapshots arrive from the change notifier.
"""
import enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from jobwatch.logging_config import get_logger

logger = get_logger(component="models.job")


class JobStatus(str, enum.Enum):
    """Remote job status as stored on the job document."""
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})


class TrackerState(str, enum.Enum):
    """Client-side state of a tracked job."""
    IDLE = "idle"
    SUBMITTING = "submitting"
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    UPLOAD_TIMED_OUT = "upload_timed_out"
    CANCELLED = "cancelled"


TERMINAL_TRACKER_STATES = frozenset({
    TrackerState.DONE,
    TrackerState.ERROR,
    TrackerState.TIMED_OUT,
    TrackerState.UPLOAD_TIMED_OUT,
    TrackerState.CANCELLED,
})


class TimerKind(str, enum.Enum):
    """Client-side timers armed per job."""
    UPLOAD = "upload"
    ANALYSIS = "analysis"


class Finding(BaseModel):
    """Outcome of one rule check."""
    rule_id: str = Field(alias="ruleId")
    ok: bool = False
    note: str | None = None

    model_config = {"populate_by_name": True}


class AnalysisResult(BaseModel):
    """Result payload present on a DONE job."""
    score: float | None = None
    summary: str | None = None
    findings: list[Finding] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the backend reported success without any content."""
        return self.score is None and not self.summary and not self.findings

    def qualifies(self, threshold: float) -> bool:
        """Whether the score meets the gate threshold."""
        return self.score is not None and self.score >= threshold


class JobSnapshot(BaseModel):
    """
    Point-in-time view of a job document.

    exists is False when the document has not been created yet; such
    snapshots carry no status and are ignored by the tracker.
    """
    job_id: str
    exists: bool = True
    status: JobStatus | None = None
    result: AnalysisResult | None = None
    error: str | None = None
    updated_at: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_document(cls, job_id: str, data: dict[str, Any] | None) -> "JobSnapshot":
        """
        Build a snapshot from a raw job document.

        Unknown statuses are dropped with a warning. result is only kept on
        DONE and error only on ERROR.
        """
        if data is None:
            return cls(job_id=job_id, exists=False)

        raw_status = data.get("status")
        try:
            status = JobStatus(raw_status) if raw_status is not None else None
        except ValueError:
            logger.warning("unknown_job_status", job_id=job_id, status=raw_status)
            status = None

        result = None
        if status == JobStatus.DONE:
            try:
                result = AnalysisResult.model_validate(data.get("result") or {})
            except ValidationError as e:
                logger.warning("malformed_job_result", job_id=job_id, error=str(e))
                result = AnalysisResult()

        error = None
        if status == JobStatus.ERROR:
            raw_error = data.get("error")
            error = str(raw_error) if raw_error is not None else None

        return cls(
            job_id=job_id,
            status=status,
            result=result,
            error=error,
            updated_at=data.get("updatedAt"),
        )

    def __repr__(self):
        return f"<JobSnapshot(job_id={self.job_id}, status={self.status})>"
