"""
Error classifier.

Maps raw failure information onto a closed set of user-facing categories.
Rules are evaluated in table order; the first match wins.

The category is advisory UI copy only. Nothing in JobWatch retries based
on it.
"""
import enum
import re
from dataclasses import dataclass
from typing import Callable

from jobwatch.errors import SubmitError


class ErrorCategory(str, enum.Enum):
    """User-facing failure categories."""
    NOT_FOUND = "not_found"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    SERVER_FAULT = "server_fault"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    UNSUPPORTED_FORMAT = "unsupported_format"
    NETWORK_UNREACHABLE = "network_unreachable"
    SESSION_EXPIRED = "session_expired"
    CHANNEL_LOST = "channel_lost"
    UNKNOWN = "unknown"


CATEGORY_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.NOT_FOUND: "The processing service could not be found. Check the configured endpoint.",
    ErrorCategory.PAYLOAD_TOO_LARGE: "The file is too large. Try a smaller or more compressed file.",
    ErrorCategory.SERVER_FAULT: "The processing service hit an internal error. Try again later.",
    ErrorCategory.SERVICE_UNAVAILABLE: "The processing service is temporarily unavailable. Try again in a few minutes.",
    ErrorCategory.TIMEOUT: "Processing took too long. Try a shorter file.",
    ErrorCategory.RESOURCE_EXHAUSTED: "The service ran out of memory processing the file. Try a shorter or lower-resolution file.",
    ErrorCategory.UNSUPPORTED_FORMAT: "The file format is not supported. Use a common format such as MP4.",
    ErrorCategory.NETWORK_UNREACHABLE: "Could not reach the service. Check your connection.",
    ErrorCategory.SESSION_EXPIRED: "Your session has expired. Sign in again.",
    ErrorCategory.CHANNEL_LOST: "Lost connection while waiting for the result. Check your connection.",
    ErrorCategory.UNKNOWN: "Something went wrong while processing the file.",
}


@dataclass(frozen=True)
class FailureInfo:
    """Raw failure information collected at the failure site."""
    http_status: int | None = None
    transport_failure: bool = False
    raw_message: str | None = None
    session_expired: bool = False
    channel_lost: bool = False

    @classmethod
    def from_submit_error(cls, error: SubmitError) -> "FailureInfo":
        return cls(
            http_status=error.status_code,
            transport_failure=error.transport_failure,
            raw_message=error.body or str(error),
        )


@dataclass(frozen=True)
class ClassificationRule:
    category: ErrorCategory
    matches: Callable[[FailureInfo], bool]


def status_is(code: int) -> Callable[[FailureInfo], bool]:
    return lambda info: info.http_status == code


def message_matches(pattern: str) -> Callable[[FailureInfo], bool]:
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda info: bool(info.raw_message) and regex.search(info.raw_message) is not None


TIMEOUT_PATTERN = r"time[d\s-]*out|deadline exceeded"
MEMORY_PATTERN = r"memory|\boom\b|resource[_\s]exhausted"
FORMAT_PATTERN = r"(?<![a-z])format|codec|unsupported"

DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    # A lost channel is always reported as such, whatever its message says.
    ClassificationRule(ErrorCategory.CHANNEL_LOST, lambda info: info.channel_lost),
    ClassificationRule(ErrorCategory.NOT_FOUND, status_is(404)),
    ClassificationRule(ErrorCategory.PAYLOAD_TOO_LARGE, status_is(413)),
    ClassificationRule(ErrorCategory.SERVER_FAULT, status_is(500)),
    ClassificationRule(ErrorCategory.SERVICE_UNAVAILABLE, status_is(503)),
    ClassificationRule(ErrorCategory.TIMEOUT, message_matches(TIMEOUT_PATTERN)),
    ClassificationRule(ErrorCategory.RESOURCE_EXHAUSTED, message_matches(MEMORY_PATTERN)),
    ClassificationRule(ErrorCategory.UNSUPPORTED_FORMAT, message_matches(FORMAT_PATTERN)),
    ClassificationRule(ErrorCategory.NETWORK_UNREACHABLE, lambda info: info.transport_failure),
    ClassificationRule(ErrorCategory.SESSION_EXPIRED, lambda info: info.session_expired),
)


class ErrorClassifier:
    """Ordered (rule, category) table."""

    def __init__(self, rules: tuple[ClassificationRule, ...] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def classify(self, info: FailureInfo) -> ErrorCategory:
        for rule in self.rules:
            if rule.matches(info):
                return rule.category
        return ErrorCategory.UNKNOWN

    def with_rule(self, rule: ClassificationRule, index: int | None = None) -> "ErrorClassifier":
        """Return a copy with an extra rule inserted (appended by default)."""
        rules = list(self.rules)
        rules.insert(len(rules) if index is None else index, rule)
        return ErrorClassifier(tuple(rules))


def describe(category: ErrorCategory) -> str:
    """User-facing copy for a category."""
    return CATEGORY_MESSAGES[category]


# Singleton instance
classifier = ErrorClassifier()
