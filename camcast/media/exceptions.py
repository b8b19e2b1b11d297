# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Engine exceptions for clean abstraction from FFmpeg's textual failures.

These exceptions give the supervisor and its callers a consistent way to
tell configuration mistakes (never retried) from transient worker failures
(retried with backoff) without parsing FFmpeg output again upstream.

Design Pattern:
    Diagnostic text (the tail of the worker's stderr) is logged before an
    exception is recorded. The exception attributes carry structured data
    for retry logic and error categorization, not for logging.
"""


class StreamEngineError(Exception):
    """Base exception for streaming engine errors.

    Attributes:
        source_url: Source address of the session that failed
        error_code: Worker exit code, if any
        retryable: Whether the session should be relaunched
    """

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        error_code: int | None = None,
        retryable: bool = False,
    ):
        """Initialize engine error.

        Args:
            message: Human-readable error description
            source_url: Source address of the session
            error_code: Worker exit code
            retryable: Whether this error is transient and retryable
        """
        super().__init__(message)
        self.source_url = source_url
        self.error_code = error_code
        self.retryable = retryable


class ConfigurationError(StreamEngineError):
    """Configuration problems (never retryable).

    Raised for:
    - Missing source address
    - No enabled output with the credentials it needs
    - Worker-reported unrecognized, invalid or missing options

    Retrying with the same configuration cannot fix these.
    """

    def __init__(self, message: str, source_url: str | None = None, error_code: int | None = None):
        super().__init__(message, source_url, error_code, retryable=False)


class TransientWorkerFailure(StreamEngineError):
    """Any other abnormal worker exit (retryable until the retry limit is reached)."""

    def __init__(self, message: str, source_url: str | None = None, error_code: int | None = None):
        super().__init__(message, source_url, error_code, retryable=True)


class WorkerLaunchError(StreamEngineError):
    """The worker executable could not be found or started (not retryable)."""

    def __init__(self, message: str, source_url: str | None = None):
        super().__init__(message, source_url, retryable=False)
