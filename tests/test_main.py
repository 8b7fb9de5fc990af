"""
Command-line runner tests.

run() is driven end to end with the Redis notifier on a fake server and
fake HTTP clients patched in where main builds its collaborators.
"""
import json

import pytest

from jobwatch import main
from jobwatch.config import settings
from jobwatch.services.credentials import StaticCredentialProvider
from jobwatch.services.notifiers import document_key
from jobwatch.services.submission_client import SubmitAck


class FinishingSubmissionClient:
    """Accepts the job and stores its final document before returning."""

    def __init__(self, server, document):
        self.server = server
        self.document = document
        self.calls = []

    async def submit(self, job_id, payload, identity=None):
        self.calls.append((job_id, payload, identity))
        key = document_key(settings.JOBS_COLLECTION, job_id)
        self.server.data[key] = json.dumps(self.document).encode()
        return SubmitAck(job_id=job_id, status_code=200)


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "lesson.mp4"
    path.write_bytes(b"\x00" * 32)
    return path


@pytest.fixture
def wire(monkeypatch, redis_server, identity, upload_client):
    def install(document):
        submission_client = FinishingSubmissionClient(redis_server, document)
        monkeypatch.setattr(main, "SubmissionClient", lambda: submission_client)
        monkeypatch.setattr(main, "UploadClient", lambda: upload_client)
        monkeypatch.setattr(main, "TokenCredentialProvider", lambda token: StaticCredentialProvider(identity))
        return submission_client, upload_client

    return install


async def test_run_reports_and_publishes_qualifying_job(wire, video, redis_server, capsys):
    submission_client, upload_client = wire({"status": "done", "result": {"score": 18, "summary": "Good"}})

    code = await main.run(main.parse_args([str(video), "--threshold", "10", "--publish"]))

    assert code == 0
    assert submission_client.calls[0][1].filename == "lesson.mp4"
    assert submission_client.calls[0][1].content_type == "video/mp4"
    assert len(upload_client.calls) == 1
    output = capsys.readouterr().out
    assert "Score: 18" in output
    assert "Published: https://youtu.be/abc123" in output
    assert redis_server.closed


async def test_run_skips_publish_below_threshold(wire, video):
    _, upload_client = wire({"status": "done", "result": {"score": 4}})

    code = await main.run(main.parse_args([str(video), "--publish"]))

    assert code == 0
    assert upload_client.calls == []


async def test_run_returns_failure_code_for_failed_job(wire, video, capsys):
    wire({"status": "error", "error": "Unsupported codec"})

    code = await main.run(main.parse_args([str(video)]))

    assert code == 1
    assert "Details: Unsupported codec" in capsys.readouterr().out


def test_main_rejects_missing_file(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(main, "configure_logging", lambda: None)
    monkeypatch.setattr(main, "configure_sentry", lambda: None)

    assert main.main([str(tmp_path / "missing.mp4")]) == 2
    assert "File not found" in capsys.readouterr().err
