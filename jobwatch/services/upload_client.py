"""
Secondary upload client.

Publishes an analyzed file to the external host and returns its link.
"""
import httpx

from jobwatch.config import settings
from jobwatch.errors import UploadError
from jobwatch.logging_config import get_logger
from jobwatch.services.submission_client import SubmissionPayload, post_request

logger = get_logger(component="upload_client")


class UploadClient:
    """Client for the secondary remote endpoint."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or settings.UPLOAD_URL
        self.timeout = timeout if timeout is not None else settings.SECONDARY_REQUEST_TIMEOUT_SECONDS
        self.transport = transport

    async def upload(self, job_id: str, payload: SubmissionPayload) -> str:
        """
        Upload and return the target link.

        Raises:
            UploadError: on transport failure, non-2xx response or a
                response without a link
        """
        log = logger.bind(job_id=job_id)
        log.info("upload_started", url=self.url, size=payload.size)

        response = await post_request(
            self.url,
            timeout=self.timeout,
            transport=self.transport,
            error_class=UploadError,
            data={"analysisId": job_id},
            files={"file": (payload.filename, payload.content, payload.content_type)},
        )

        try:
            body = response.json()
        except ValueError:
            body = None
        link = body.get("targetLink") if isinstance(body, dict) else None
        if not link:
            raise UploadError(
                "Upload response did not include a target link",
                status_code=response.status_code,
                body=response.text,
            )

        log.info("upload_completed", target_link=link)
        return link
