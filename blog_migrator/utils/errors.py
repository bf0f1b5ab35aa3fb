"""
Error taxonomy and structured logging for migration events.

The exception classes below describe every failure the pipeline knows how
to handle.  Image-level errors (:class:`MediaError` and subclasses) are
absorbed by the post migrator; store errors turn into a failed outcome for
one post; source errors end the run.

Two reporting functions are provided:

``report_error``
    Record an error that occurred for a post.  An optional exception can be
    supplied and will be serialized to the log.

``report_ok``
    Record a successful step for a post.  Additional key/value information can
    be attached to the entry via the ``extra`` parameter.

Each entry is appended to a JSON Lines file under the report directory
(``reports/migration`` by default) so that a run can be reviewed or parsed
afterwards.  The ``ERRORS`` dictionary maps event codes to human readable
messages.  Codes not present in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base class for all errors raised by the migration pipeline."""


class MediaError(MigrationError):
    """An image could not be moved to object storage."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TransientNetworkError(MediaError):
    """Connection failure, timeout or 5xx response.  Retryable."""


class PermanentFetchError(MediaError):
    """4xx-class response from the legacy host.  Never retried."""


class UploadError(MediaError):
    """Object storage rejected the upload."""


class StoreError(MigrationError):
    """The destination store did not accept a post."""


class StoreUnavailableError(StoreError):
    """Destination store unreachable or failing server-side."""


class PostValidationError(StoreError):
    """The post record was rejected as malformed."""


class SourceFetchError(MigrationError):
    """A page of source posts could not be fetched."""


class SourcePageError(MigrationError):
    """Raised by the driver when the source fails mid-run.

    ``next_page`` is the page index to pass as ``start_page`` to resume and
    ``summary`` holds the outcomes gathered before the failure.
    """

    def __init__(self, message: str, *, pages_completed: int, next_page: int, summary: Any = None) -> None:
        super().__init__(message)
        self.pages_completed = pages_completed
        self.next_page = next_page
        self.summary = summary


class PreFlightCheckError(MigrationError):
    """Configuration or connectivity check failed before a live run."""


# Mapping of event codes used throughout the migration to descriptive messages.
# The keys include both error and success codes as the same lookup is used by
# :func:`report_error` and :func:`report_ok`.
ERRORS: Dict[str, str] = {
    "IMAGE_FETCH": "Failed to download image from the legacy host",
    "IMAGE_UPLOAD": "Failed to upload image to object storage",
    "STORE_UNAVAILABLE": "Destination store unreachable",
    "VALIDATION": "Post rejected as malformed",
    "UNEXPECTED": "Unexpected error while migrating post",
    "POST_MIGRATED": "Post upserted successfully",
    "POST_DRY_RUN": "Post normalized (dry run, nothing written)",
}

DEFAULT_REPORT_DIR = os.path.join("reports", "migration")
ERROR_LOG_NAME = "errors.jsonl"
OK_LOG_NAME = "success.jsonl"

_write_lock = threading.Lock()


def _post_field(post: Any, name: str) -> Any:
    if isinstance(post, dict):
        return post.get(name)
    return getattr(post, name, None)


def _write_jsonl(path: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``path``."""
    with _write_lock:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, default=str)
            f.write("\n")


def report_error(
    code: str,
    post: Any,
    exc: Optional[BaseException] = None,
    *,
    extra: Optional[Dict[str, Any]] = None,
    report_dir: Optional[str] = None,
) -> None:
    """Log an error event for ``post``.

    Parameters
    ----------
    code:
        A key identifying the type of error.  If ``code`` is present in
        :data:`ERRORS` its value will be used as the message.
    post:
        The post (model or dictionary) associated with the error.  Only the
        ``slug`` and ``title`` fields are referenced if present.
    exc:
        Optional exception instance that triggered the error.  The string
        representation of the exception will be included in the log entry.
    extra:
        Optional dictionary of additional fields to merge into the log entry.
    report_dir:
        Directory holding the JSONL files.  Defaults to ``reports/migration``.
    """
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {
        "code": code,
        "message": message,
        "slug": _post_field(post, "slug"),
        "title": _post_field(post, "title"),
    }
    if exc is not None:
        entry["error"] = str(exc)
    if extra:
        entry.update(extra)
    print(f"[ERROR] {message} - {entry['slug'] or ''}")
    _write_jsonl(os.path.join(report_dir or DEFAULT_REPORT_DIR, ERROR_LOG_NAME), entry)


def report_ok(
    code: str,
    post: Any,
    extra: Optional[Dict[str, Any]] = None,
    *,
    report_dir: Optional[str] = None,
) -> None:
    """Log a successful event for ``post``.

    Parameters
    ----------
    code:
        A key identifying the type of event.
    post:
        The post (model or dictionary) associated with the event.
    extra:
        Optional dictionary of additional fields to merge into the log entry.
    report_dir:
        Directory holding the JSONL files.  Defaults to ``reports/migration``.
    """
    message = ERRORS.get(code, code)
    entry: Dict[str, Any] = {
        "code": code,
        "message": message,
        "slug": _post_field(post, "slug"),
        "title": _post_field(post, "title"),
    }
    if extra:
        entry.update(extra)
    print(f"[OK] {message} - {entry['slug'] or ''}")
    _write_jsonl(os.path.join(report_dir or DEFAULT_REPORT_DIR, OK_LOG_NAME), entry)
