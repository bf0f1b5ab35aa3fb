"""
Image transfer from the legacy WordPress host to Cloudflare R2.

This module implements the network side of image re-hosting.  Images are
downloaded with :func:`fetch_image_bytes`, which retries transient
failures (connection errors, timeouts, 408/429 and 5xx responses) a
bounded number of times and never retries other 4xx responses.  Uploads go
through :class:`R2Uploader`, a ``put_object`` on a boto3 S3 client pointed at
the R2 endpoint, which returns the public URL of the stored object.

A simple thread-safe rate limiter is included so that a large run does not
hammer the legacy host.

Usage example::

    from blog_migrator.migrators.media_migrator import R2Uploader, fetch_image_bytes

    uploader = R2Uploader.from_config(cfg["storage"])
    data, content_type = fetch_image_bytes(url)
    public_url = uploader.upload(data, "2020/05/photo.jpg", content_type)
"""

from __future__ import annotations

import mimetypes
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from blog_migrator.utils.errors import PermanentFetchError, TransientNetworkError, UploadError

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 2
RETRYABLE_STATUS = (408, 429, 500, 502, 503, 504)

###############################################################################
# Rate limiting and retry utilities
###############################################################################

class RateLimiter:
    """
    Simple time-based rate limiter.  Ensures that no more than ``rpm``
    requests are dispatched per minute across all worker threads.  An
    ``rpm`` of zero disables the limiter.
    """

    def __init__(self, rpm: int = 0) -> None:
        self.rpm = max(0, int(rpm or 0))
        self.interval = 60.0 / float(self.rpm) if self.rpm else 0.0
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self, time_fn: Callable[[], float] = time.monotonic, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        if not self.interval:
            return
        with self._lock:
            now = time_fn()
            elapsed = now - self._last
            if elapsed < self.interval:
                sleep_fn(self.interval - elapsed)
            self._last = time_fn()


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = DEFAULT_MAX_RETRIES + 1,
    base_delay: float = 0.7,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response``, retrying on
    transient HTTP errors.  Retries are attempted on status codes listed in
    :data:`RETRYABLE_STATUS` and on connection errors or timeouts.  Backoff
    is exponential; a ``Retry-After`` header wins when present.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds for exponential backoff.
    :return: The successful ``requests.Response``.
    :raises requests.HTTPError: on a non-retryable status or when all attempts fail.
    :raises requests.RequestException: when the last attempt fails at the network level.
    """
    attempt = 0
    while True:
        try:
            resp = fn()
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status not in RETRYABLE_STATUS or attempt >= max_attempts - 1:
                raise
            retry_after = e.response.headers.get("Retry-After") if e.response is not None else None
            try:
                wait = float(retry_after) if retry_after else base_delay * (2 ** attempt)
            except ValueError:
                wait = base_delay * (2 ** attempt)
            sleep_fn(wait)
            attempt += 1
        except requests.RequestException:
            if attempt >= max_attempts - 1:
                raise
            sleep_fn(base_delay * (2 ** attempt))
            attempt += 1


###############################################################################
# Legacy media download
###############################################################################

def fetch_image_bytes(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = 0.7,
    limiter: Optional[RateLimiter] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Tuple[bytes, str]:
    """
    Download an image from the legacy host.

    :return: ``(data, content_type)``.
    :raises PermanentFetchError: on a non-retryable 4xx response.
    :raises TransientNetworkError: when every attempt failed transiently.
    """
    http = session or requests

    def do_request() -> requests.Response:
        if limiter is not None:
            limiter.wait()
        return http.get(url, timeout=timeout, allow_redirects=True)

    try:
        resp = with_retries(do_request, max_attempts=max_retries + 1, base_delay=base_delay, sleep_fn=sleep_fn)
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        if status is not None and status not in RETRYABLE_STATUS and 400 <= status < 500:
            raise PermanentFetchError(f"HTTP {status} for {url}", url=url, status=status) from e
        raise TransientNetworkError(f"HTTP {status} for {url} after retries", url=url, status=status) from e
    except requests.RequestException as e:
        raise TransientNetworkError(f"Network error for {url}: {e}", url=url) from e

    content_type = (resp.headers.get("Content-Type") or "").split(";")[0].strip()
    if not content_type:
        content_type = mimetypes.guess_type(url.split("?")[0])[0] or "image/jpeg"
    return resp.content, content_type


###############################################################################
# R2 upload (S3-compatible API through boto3)
###############################################################################

_TRANSIENT_BOTO_ERRORS = (EndpointConnectionError, ConnectionClosedError, ConnectTimeoutError, ReadTimeoutError)


def _client_error_status(exc: ClientError) -> Optional[int]:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


class R2Uploader:
    """
    Uploads objects to a Cloudflare R2 bucket and returns public URLs.

    The bucket is addressed through the account's S3 endpoint with a boto3
    client; objects are served from ``public_url``.  ``key_prefix`` is
    prepended by callers through :func:`blog_migrator.utils.urls.upload_key_for`.
    The client is created on first use unless one is passed in.
    """

    region = "auto"

    def __init__(
        self,
        *,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_url: str,
        key_prefix: str = "",
        client: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.account_id = account_id
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.key_prefix = key_prefix
        self.timeout = timeout
        self._client = client
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "R2Uploader":
        return cls(
            account_id=cfg.get("account_id", ""),
            access_key_id=cfg.get("access_key_id", ""),
            secret_access_key=cfg.get("secret_access_key", ""),
            bucket=cfg.get("bucket", ""),
            public_url=cfg.get("public_url", ""),
            key_prefix=cfg.get("key_prefix", ""),
            **kwargs,
        )

    @property
    def endpoint_url(self) -> str:
        return f"https://{self.account_id}.r2.cloudflarestorage.com"

    @property
    def client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=self.endpoint_url,
                    region_name=self.region,
                    aws_access_key_id=self.access_key_id,
                    aws_secret_access_key=self.secret_access_key,
                    config=BotoConfig(
                        connect_timeout=self.timeout,
                        read_timeout=self.timeout,
                        retries={"max_attempts": DEFAULT_MAX_RETRIES + 1, "mode": "standard"},
                    ),
                )
            return self._client

    def public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key.lstrip('/')}"

    def upload(self, data: bytes, key: str, content_type: str = "image/jpeg") -> str:
        """
        Store ``data`` under ``key`` and return its public URL.

        :raises TransientNetworkError: on connection failures, timeouts or a 5xx response.
        :raises UploadError: when R2 rejects the request.
        """
        key = key.lstrip("/")
        target = f"r2://{self.bucket}/{key}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except ClientError as e:
            status = _client_error_status(e)
            if status is not None and status >= 500:
                raise TransientNetworkError(f"Upload of {key} failed ({status})", url=target, status=status) from e
            raise UploadError(f"Upload of {key} rejected ({status}): {e}", url=target, status=status) from e
        except _TRANSIENT_BOTO_ERRORS as e:
            raise TransientNetworkError(f"Upload of {key} failed: {e}", url=target) from e
        except BotoCoreError as e:
            raise UploadError(f"Upload of {key} failed: {e}", url=target) from e
        return self.public_url_for(key)

    def exists(self, key: str) -> bool:
        """True when ``key`` is already in the bucket."""
        try:
            self.client.head_object(Bucket=self.bucket, Key=key.lstrip("/"))
        except (ClientError, BotoCoreError):
            return False
        return True
