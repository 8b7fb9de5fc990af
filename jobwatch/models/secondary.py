"""
Secondary job model for the gated publish action.

Borrows its identity from the parent job.
"""
import enum

from pydantic import BaseModel


class SecondaryPhase(str, enum.Enum):
    """Secondary action phase."""
    LOCKED = "locked"
    ELIGIBLE = "eligible"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"


class SecondaryJob(BaseModel):
    """
    Publish sub-job attached to a parent analysis job.

    target_link is only set once phase is UPLOADED.
    """
    job_id: str
    phase: SecondaryPhase = SecondaryPhase.LOCKED
    target_link: str | None = None
    attempts: int = 0

    def __repr__(self):
        return f"<SecondaryJob(job_id={self.job_id}, phase={self.phase})>"
