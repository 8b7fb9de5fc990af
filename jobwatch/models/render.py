"""
Render events emitted by the tracker and the secondary gate.

Each event is a tagged model; RenderDispatcher routes it to the matching
RenderCallbacks method so the UI layer stays swappable.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from jobwatch.models.job import AnalysisResult, TimerKind
from jobwatch.services.error_classifier import ErrorCategory


class QueuedEvent(BaseModel):
    kind: Literal["queued"] = "queued"
    job_id: str


class ProcessingEvent(BaseModel):
    kind: Literal["processing"] = "processing"
    job_id: str


class DoneEvent(BaseModel):
    kind: Literal["done"] = "done"
    job_id: str
    result: AnalysisResult
    qualifies: bool = False
    threshold: float


class IncompleteEvent(BaseModel):
    """DONE reported by the backend but with an empty result."""
    kind: Literal["incomplete"] = "incomplete"
    job_id: str


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    job_id: str
    category: ErrorCategory
    raw_message: str | None = None


class TimeoutEvent(BaseModel):
    kind: Literal["timeout"] = "timeout"
    job_id: str
    timer: TimerKind
    category: ErrorCategory = ErrorCategory.TIMEOUT


class EligibleEvent(BaseModel):
    kind: Literal["eligible"] = "eligible"
    job_id: str


class UploadingEvent(BaseModel):
    kind: Literal["uploading"] = "uploading"
    job_id: str


class UploadedEvent(BaseModel):
    kind: Literal["uploaded"] = "uploaded"
    job_id: str
    link: str


class UploadFailedEvent(BaseModel):
    kind: Literal["upload_failed"] = "upload_failed"
    job_id: str
    category: ErrorCategory
    raw_message: str | None = None


RenderEvent = Annotated[
    Union[
        QueuedEvent,
        ProcessingEvent,
        DoneEvent,
        IncompleteEvent,
        ErrorEvent,
        TimeoutEvent,
        EligibleEvent,
        UploadingEvent,
        UploadedEvent,
        UploadFailedEvent,
    ],
    Field(discriminator="kind"),
]

render_event_adapter = TypeAdapter(RenderEvent)


class RenderCallbacks:
    """
    UI hooks. Subclass and override what you need; the defaults do nothing.
    """

    def on_queued(self, event: QueuedEvent) -> None:
        pass

    def on_processing(self, event: ProcessingEvent) -> None:
        pass

    def on_done(self, event: DoneEvent) -> None:
        pass

    def on_incomplete(self, event: IncompleteEvent) -> None:
        pass

    def on_error(self, event: ErrorEvent) -> None:
        pass

    def on_timeout(self, event: TimeoutEvent) -> None:
        pass

    def on_eligible(self, event: EligibleEvent) -> None:
        pass

    def on_uploading(self, event: UploadingEvent) -> None:
        pass

    def on_uploaded(self, event: UploadedEvent) -> None:
        pass

    def on_upload_failed(self, event: UploadFailedEvent) -> None:
        pass


class RenderDispatcher:
    """Routes render events to callbacks by their kind tag."""

    def __init__(self, callbacks: RenderCallbacks | None = None):
        self.callbacks = callbacks or RenderCallbacks()

    def dispatch(self, event: RenderEvent) -> None:
        handler = getattr(self.callbacks, f"on_{event.kind}")
        handler(event)
