"""
Sentry helper tests.
"""
from jobwatch.sentry_config import capture_exception, capture_message


def test_helpers_are_silent_without_dsn():
    capture_message("job_failed:unknown", level="warning", job_id="job-1")
    try:
        raise RuntimeError("ui crashed")
    except RuntimeError:
        capture_exception(job_id="job-1")


def test_helpers_forward_to_active_client(sentry_events):
    capture_message("job_failed:server_fault", level="warning", job_id="job-1")
    capture_exception(job_id="job-1")

    assert sentry_events == [("warning", "job_failed:server_fault"), ("exception", None)]
