"""Failure classification for job-level retry decisions.

Classification is table driven: an ordered list of lower-case substrings,
each mapped to a retryable flag, is scanned against the error text and the
first match wins. Anything unmatched is fatal, so unknown error shapes fail
fast instead of burning attempts on permanent problems.
"""

from enum import Enum

# (substring, retryable) pairs, first match wins. Fatal overrides come first
# so that e.g. "render timed out" is not caught by the generic "timed out".
RETRY_PATTERNS: tuple[tuple[str, bool], ...] = (
    ("render timed out", False),
    ("invalid prompt", False),
    ("quota exceeded", False),
    ("etimedout", True),
    ("econnreset", True),
    ("econnrefused", True),
    ("enotfound", True),
    ("eai_again", True),
    ("socket hang up", True),
    ("timeout", True),
    ("timed out", True),
    ("network error", True),
    ("networkerror", True),
    ("fetch failed", True),
    ("connection refused", True),
    ("connection reset", True),
    ("connectionreset", True),
    ("connectionerror", True),
    ("connecterror", True),
    ("remoteprotocolerror", True),
    ("temporary failure", True),
    ("service unavailable", True),
    ("internal server error", True),
    ("bad gateway", True),
    ("gateway timeout", True),
    # google-genai errors render as "<code> <STATUS>. {details}"
    ("servererror", True),
    ("unavailable", True),
    ("overloaded", True),
    ("500 internal", True),
    ("resource_exhausted", True),
    ("too many requests", True),
    ("rate limit", True),
)


class FailureCause(str, Enum):
    """Best-effort cause category shown to users."""

    CONNECTIVITY = "connectivity"
    SERVICE_UNAVAILABLE = "service_unavailable"
    STORAGE = "storage"
    GENERIC = "generic"


CAUSE_PATTERNS: tuple[tuple[str, FailureCause], ...] = (
    ("etimedout", FailureCause.CONNECTIVITY),
    ("econnreset", FailureCause.CONNECTIVITY),
    ("econnrefused", FailureCause.CONNECTIVITY),
    ("enotfound", FailureCause.CONNECTIVITY),
    ("eai_again", FailureCause.CONNECTIVITY),
    ("fetch failed", FailureCause.CONNECTIVITY),
    ("network", FailureCause.CONNECTIVITY),
    ("connect", FailureCause.CONNECTIVITY),
    ("timeout", FailureCause.CONNECTIVITY),
    ("socket hang up", FailureCause.CONNECTIVITY),
    ("service unavailable", FailureCause.SERVICE_UNAVAILABLE),
    ("internal server error", FailureCause.SERVICE_UNAVAILABLE),
    ("bad gateway", FailureCause.SERVICE_UNAVAILABLE),
    ("servererror", FailureCause.SERVICE_UNAVAILABLE),
    ("unavailable", FailureCause.SERVICE_UNAVAILABLE),
    ("overloaded", FailureCause.SERVICE_UNAVAILABLE),
    ("resource_exhausted", FailureCause.SERVICE_UNAVAILABLE),
    ("too many requests", FailureCause.SERVICE_UNAVAILABLE),
    ("rate limit", FailureCause.SERVICE_UNAVAILABLE),
    ("upload", FailureCause.STORAGE),
    ("storage", FailureCause.STORAGE),
    ("bucket", FailureCause.STORAGE),
    ("amazonaws", FailureCause.STORAGE),
    ("no space left", FailureCause.STORAGE),
    ("permission denied", FailureCause.STORAGE),
)

CAUSE_MESSAGES = {
    FailureCause.CONNECTIVITY: "Problem connecting to an external service.",
    FailureCause.SERVICE_UNAVAILABLE: "An external service is temporarily unavailable.",
    FailureCause.STORAGE: "Problem saving or uploading generated media.",
    FailureCause.GENERIC: "Video generation failed.",
}


def _haystack(error: BaseException) -> str:
    # Include the type name: transport errors often carry an empty message
    return f"{type(error).__name__}: {error}".lower()


def is_retryable(error: BaseException) -> bool:
    """Return True only for transient errors worth another job attempt."""
    text = _haystack(error)
    for pattern, retryable in RETRY_PATTERNS:
        if pattern in text:
            return retryable
    return False


def classify_cause(error: BaseException) -> FailureCause:
    text = _haystack(error)
    for pattern, cause in CAUSE_PATTERNS:
        if pattern in text:
            return cause
    return FailureCause.GENERIC


def user_message(error: BaseException) -> str:
    """Short, user-facing description of what went wrong."""
    return CAUSE_MESSAGES[classify_cause(error)]
