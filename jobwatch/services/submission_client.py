"""
Job submission client.

Hands a payload and a client-generated job id to the remote processing
endpoint with one bounded-time HTTP call. Never retries.
"""
import threading
import uuid
from dataclasses import dataclass

import httpx

from jobwatch.config import settings
from jobwatch.errors import SubmitError
from jobwatch.logging_config import get_logger
from jobwatch.services.credentials import Identity

logger = get_logger(component="submission_client")


def new_job_id() -> str:
    """Generate a fresh, never reused job id."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class SubmissionPayload:
    """File handed to the remote endpoint."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class SubmitAck:
    """Successful hand-off."""
    job_id: str
    status_code: int
    body: str = ""


async def post_request(
    url: str,
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    error_class: type[SubmitError] = SubmitError,
    **request_kwargs,
) -> httpx.Response:
    """
    POST once and translate failures into error_class.

    Transport failures (no response) get transport_failure=True; any
    non-2xx response carries its status code and body.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, **request_kwargs)
    except httpx.HTTPError as e:
        message = str(e) or e.__class__.__name__
        raise error_class(message, transport_failure=True) from e

    if not response.is_success:
        body = response.text
        raise error_class(
            f"HTTP {response.status_code}: {body[:200]}",
            status_code=response.status_code,
            body=body,
        )
    return response


class SubmissionClient:
    """Client for the remote processing endpoint."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        institution_id: str | None = None,
        job_type: str = "video",
    ):
        self.url = url or settings.ANALYZE_URL
        self.timeout = timeout if timeout is not None else settings.SUBMIT_REQUEST_TIMEOUT_SECONDS
        self.transport = transport
        self.institution_id = institution_id or settings.INSTITUTION_ID
        self.job_type = job_type
        self._submitted: set[str] = set()
        self._lock = threading.Lock()

    async def submit(
        self,
        job_id: str,
        payload: SubmissionPayload,
        identity: Identity | None = None,
    ) -> SubmitAck:
        """
        Submit a job.

        Args:
            job_id: Unique, never submitted before
            payload: File to analyze
            identity: Owner stamped on the job

        Returns:
            SubmitAck on a 2xx response

        Raises:
            SubmitError: on transport failure or non-2xx response
            ValueError: if job_id was already submitted (caller bug)
        """
        with self._lock:
            if job_id in self._submitted:
                raise ValueError(f"Job id already submitted: {job_id}")
            self._submitted.add(job_id)

        data = {
            "analysisId": job_id,
            "type": self.job_type,
            "institutionId": self.institution_id,
        }
        if identity is not None:
            data["uploaderUid"] = identity.uid

        log = logger.bind(job_id=job_id)
        log.info("submit_started", url=self.url, size=payload.size, filename=payload.filename)

        try:
            response = await post_request(
                self.url,
                timeout=self.timeout,
                transport=self.transport,
                data=data,
                files={"file": (payload.filename, payload.content, payload.content_type)},
            )
        except SubmitError as e:
            log.warning(
                "submit_failed",
                status_code=e.status_code,
                transport_failure=e.transport_failure,
                error=str(e),
            )
            raise

        log.info("submit_accepted", status_code=response.status_code)
        return SubmitAck(job_id=job_id, status_code=response.status_code, body=response.text)
