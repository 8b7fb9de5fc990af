"""
JobWatch command-line entry point.

Submits a file for analysis, follows it to a terminal state and prints
each step. Optionally publishes the file when the score qualifies.

Usage:
    python -m jobwatch.main video.mp4 --threshold 10 --publish
"""
import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from jobwatch.config import settings
from jobwatch.errors import GateError, UploadError
from jobwatch.logging_config import configure_logging, get_logger
from jobwatch.models.job import TrackerState
from jobwatch.sentry_config import configure_sentry
from jobwatch.services.credentials import TokenCredentialProvider
from jobwatch.services.job_service import JobService
from jobwatch.services.notifiers import RedisChangeNotifier
from jobwatch.services.report import PrintingCallbacks
from jobwatch.services.submission_client import SubmissionClient, SubmissionPayload
from jobwatch.services.timer_registry import TimerRegistry
from jobwatch.services.upload_client import UploadClient

logger = get_logger(component="main")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="jobwatch", description=settings.APP_NAME)
    parser.add_argument("file", type=Path, help="File to analyze")
    parser.add_argument("--threshold", type=float, default=settings.QUALIFY_THRESHOLD,
                        help="Minimum score that unlocks publishing")
    parser.add_argument("--publish", action="store_true",
                        help="Publish the file when the score qualifies")
    parser.add_argument("--token", default=settings.AUTH_TOKEN,
                        help="Bearer token identifying the uploader")
    return parser.parse_args(argv)


def load_payload(path: Path) -> SubmissionPayload:
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return SubmissionPayload(filename=path.name, content=path.read_bytes(), content_type=content_type)


async def run(args) -> int:
    notifier = RedisChangeNotifier()
    service = JobService(
        submission_client=SubmissionClient(),
        notifier=notifier,
        credentials=TokenCredentialProvider(args.token),
        timers=TimerRegistry(),
        upload_client=UploadClient(),
        threshold=args.threshold,
    )

    try:
        tracker = await service.submit(load_payload(args.file), PrintingCallbacks())
        state = await tracker.wait()

        if args.publish and tracker.ctx.qualifies:
            try:
                await tracker.publish()
            except (GateError, UploadError) as e:
                logger.warning("publish_failed", job_id=tracker.job_id, error=str(e))
                return 1
    except asyncio.CancelledError:
        service.cancel_all()
        raise
    finally:
        await notifier.close()

    return 0 if state == TrackerState.DONE else 1


def main(argv=None) -> int:
    configure_logging()
    configure_sentry()
    args = parse_args(argv)
    if not args.file.is_file():
        print(f"File not found: {args.file}", file=sys.stderr)
        return 2
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
