"""
JobWatch error types.

All errors inherit from JobWatchError for easy catching.
None of them are retried automatically; retry is always a fresh call.
"""


class JobWatchError(Exception):
    """Base exception for all job tracking failures."""
    pass


class SubmitError(JobWatchError):
    """
    Raised when the submission call does not succeed.

    transport_failure is True when no response was received at all;
    otherwise status_code and body describe the non-success response.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        transport_failure: bool = False,
    ):
        self.status_code = status_code
        self.body = body
        self.transport_failure = transport_failure
        super().__init__(message)


class UploadError(SubmitError):
    """Raised when the secondary upload call fails."""
    pass


class ChannelError(JobWatchError):
    """Raised (or reported) when the change channel loses its connection."""
    pass


class JobTimeoutError(JobWatchError):
    """A client-side timer expired before the job reached a terminal status."""

    def __init__(self, job_id: str, kind: str):
        self.job_id = job_id
        self.kind = kind
        super().__init__(f"{kind} timer expired for job {job_id}")


class IncompleteResultError(JobWatchError):
    """The remote job reported success with an empty result."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} finished without a result")


class SessionExpiredError(JobWatchError):
    """No valid credential was available at submit time."""
    pass


class InvalidStateTransitionError(JobWatchError):
    """Raised when a caller drives a tracker from a state that forbids it."""

    def __init__(self, entity_type: str, current_state: str, action: str):
        self.entity_type = entity_type
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} in state {current_state}"
        )


class GateError(JobWatchError):
    """Base class for secondary-action rejections."""
    pass


class GateLockedError(GateError):
    """The secondary action is not unlocked for this job."""

    def __init__(self, job_id: str, phase: str):
        self.job_id = job_id
        self.phase = phase
        super().__init__(f"Secondary action for job {job_id} is {phase}")


class UploadInProgressError(GateError):
    """A secondary upload is already running for this job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Upload already in progress for job {job_id}")
