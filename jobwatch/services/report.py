"""
Plain-text rendering of render events.
"""
from jobwatch.models.job import AnalysisResult, TimerKind
from jobwatch.models.render import RenderCallbacks, RenderEvent
from jobwatch.services.error_classifier import describe

TIMEOUT_MESSAGES = {
    TimerKind.UPLOAD: "The upload took too long. Check your connection or try a smaller file.",
    TimerKind.ANALYSIS: "The analysis did not finish in time. Try again later or with a shorter file.",
}


def format_result(result: AnalysisResult) -> str:
    """Report for a finished analysis."""
    score = result.score if result.score is not None else 0
    lines = [
        "Report",
        f"Score: {score:g}",
        f"Summary: {result.summary or '—'}",
    ]
    for finding in result.findings:
        verdict = "PASS" if finding.ok else "FAIL"
        line = f"  - {finding.rule_id}: {verdict}"
        if finding.note:
            line += f" — {finding.note}"
        lines.append(line)
    if result.suggestions:
        lines.append("Suggestions:")
        lines.extend(f"  - {suggestion}" for suggestion in result.suggestions)
    return "\n".join(lines)


def format_event(event: RenderEvent) -> str:
    if event.kind == "queued":
        return "Uploaded. Waiting for the analysis to start…"
    if event.kind == "processing":
        return "Processing…"
    if event.kind == "done":
        report = format_result(event.result)
        if event.qualifies:
            report += f"\nScore meets the threshold ({event.threshold:g}); publishing is available."
        return report
    if event.kind == "incomplete":
        return "The analysis finished but returned no result."
    if event.kind in ("error", "upload_failed"):
        text = f"Error: {describe(event.category)}"
        if event.raw_message:
            text += f"\nDetails: {event.raw_message}"
        return text
    if event.kind == "timeout":
        return f"Timeout: {TIMEOUT_MESSAGES[event.timer]}"
    if event.kind == "eligible":
        return "Publishing unlocked."
    if event.kind == "uploading":
        return "Publishing…"
    if event.kind == "uploaded":
        return f"Published: {event.link}"
    raise ValueError(f"Unknown render event: {event.kind}")


class PrintingCallbacks(RenderCallbacks):
    """Callbacks that print every event through format_event."""

    def __init__(self, write=print):
        self.write = write

    def _show(self, event: RenderEvent) -> None:
        self.write(format_event(event))

    on_queued = on_processing = on_done = on_incomplete = on_error = _show
    on_timeout = on_eligible = on_uploading = on_uploaded = on_upload_failed = _show
