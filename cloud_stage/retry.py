"""
Resilient downloads.

A download stream can fail long after it was opened (connection reset in the
middle of a large object). When a retry budget is configured, each attempt
therefore reads the whole object into memory before handing it back, so any
transport failure happens inside the retry loop.
"""

from __future__ import annotations

import io
import logging
import threading
import time
from typing import BinaryIO, Callable, Optional, Tuple, Type, TypeVar

from .errors import CloudStageError, DownloadRetryExhaustedError, UnknownDownloadFailureError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(attempt: int) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return 1.0 * attempt


class ProcessedCounter:
    """Thread-safe count of completed downloads."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def retry_call(
    func: Callable[[], T],
    max_attempts: int,
    backoff: Callable[[int], float] = linear_backoff,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
    fatal: Tuple[Type[BaseException], ...] = (),
) -> T:
    """
    Call ``func`` until it succeeds or the attempt budget is spent.

    There is no sleep after the final attempt. Exceptions listed in
    ``fatal`` are raised immediately.

    Raises:
        DownloadRetryExhaustedError: All attempts failed; wraps the last error
        UnknownDownloadFailureError: No attempt was made (budget below 1)
    """
    last_error: Optional[Exception] = None
    attempt = 0

    while attempt < max_attempts:
        attempt += 1
        try:
            return func()
        except fatal:
            raise
        except Exception as e:
            last_error = e
            logger.info(
                "%s failed: attempt=%d max_attempts=%d error=[ %s ]",
                description,
                attempt,
                max_attempts,
                e,
            )
            if attempt < max_attempts:
                sleep(backoff(attempt))

    if last_error is not None:
        logger.warning(
            "%s failed after %d attempts, last error: [ %s ]",
            description,
            attempt,
            last_error,
        )
        raise DownloadRetryExhaustedError(
            f"{description} failed after {attempt} attempts: {last_error}",
            last_exception=last_error,
            attempts=attempt,
        ) from last_error

    logger.warning("%s ended without result after %d/%d attempts", description, attempt, max_attempts)
    raise UnknownDownloadFailureError(
        f"{description} ended without a result or an error ({attempt}/{max_attempts})"
    )


def download_with_retry(
    open_stream: Callable[[], BinaryIO],
    file_name: str,
    max_retry_count: int,
    counter: Optional[ProcessedCounter] = None,
    sleep: Callable[[float], None] = time.sleep,
    backoff: Callable[[int], float] = linear_backoff,
) -> BinaryIO:
    """
    Open a download stream with retries.

    With ``max_retry_count <= 1`` the stream from a single attempt is
    returned as is: no buffering, and failures while the caller reads it are
    not retried. Otherwise each attempt is read to the end and the result
    served from memory. Only transport failures are retried; errors raised
    by this package (bad metadata, wrong key) propagate on the first attempt.

    Args:
        open_stream: Opens the (decrypted, decompressed) object stream
        file_name: Object name, for logs and errors
        max_retry_count: Attempt budget
        counter: Incremented once on success
        sleep: Blocking wait used between attempts
        backoff: Delay in seconds for a given failed attempt number

    Raises:
        DownloadRetryExhaustedError: Every attempt failed
    """
    materialize = max_retry_count > 1
    file_id = counter.value if counter is not None else 0

    def attempt() -> BinaryIO:
        if not materialize:
            stream = open_stream()
            logger.info("Streaming %s without full download: fileID=%d", file_name, file_id)
            return stream

        start = time.monotonic()
        stream = open_stream()
        try:
            data = stream.read()
        finally:
            stream.close()
        elapsed = time.monotonic() - start
        logger.info(
            "Download successful: fileID=%d file=%s downloadTime=%.3fs dataSizeInMB=%.3f",
            file_id,
            file_name,
            elapsed,
            len(data) / 1024.0 / 1024.0,
        )
        return io.BytesIO(data)

    result = retry_call(
        attempt,
        max_attempts=max(max_retry_count, 1),
        backoff=backoff,
        sleep=sleep,
        description=f"download of {file_name}",
        fatal=(CloudStageError,),
    )
    if counter is not None:
        counter.increment()
    return result
