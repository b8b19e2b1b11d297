# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Type

from ..media.exceptions import ConfigurationError, StreamEngineError, TransientWorkerFailure


MAX_RETRIES = 5
RETRY_STEP_MS = 3000
RETRY_CAP_MS = 15000

# Worker complaints about its own arguments: retrying the same command cannot help
_CONFIG_ERROR_RE = re.compile(
    r"Unrecognized option|Option \S+ not found|Option not found|Invalid option"
    r"|Missing argument for option|Error parsing options|Unknown encoder",
    re.IGNORECASE,
)


class Outcome(str, Enum):
    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    FATAL = "fatal"
    RETRYABLE = "retryable"


@dataclass(frozen=True)
class ExitInfo:
    """How a worker ended."""
    returncode: Optional[int]
    cancelled: bool = False

    @property
    def clean(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        if self.returncode is None:
            return "FFmpeg exited abnormally"
        return f"FFmpeg exit code {self.returncode}"


@dataclass(frozen=True)
class RetryDecision:
    outcome: Outcome
    retry_count: int
    delay_ms: int = 0
    message: str = ""
    error_type: Optional[Type[StreamEngineError]] = None

    @property
    def error(self) -> Optional[StreamEngineError]:
        if self.error_type is None:
            return None
        return self.error_type(self.message)

    @property
    def terminal(self) -> bool:
        return self.outcome is not Outcome.RETRYABLE


def retry_delay_ms(retry_count: int) -> int:
    """Linear backoff for the given (already incremented) attempt number, capped."""
    return min(max(retry_count, 0) * RETRY_STEP_MS, RETRY_CAP_MS)


def is_config_error(diagnostics: str) -> bool:
    return bool(_CONFIG_ERROR_RE.search(diagnostics or ""))


def _last_error_line(diagnostics: str) -> str:
    lines = [line.strip() for line in (diagnostics or "").splitlines() if line.strip()]
    for line in reversed(lines):
        if _CONFIG_ERROR_RE.search(line) or "error" in line.lower() or "failed" in line.lower():
            return line
    return lines[-1] if lines else ""


def decide(
    exit_info: ExitInfo,
    diagnostics: str,
    retry_count: int,
    max_retries: int = MAX_RETRIES,
) -> RetryDecision:
    """Decide what follows a worker exit.

    Identical inputs always produce the identical decision; the caller owns
    the counter and stores ``decision.retry_count`` back.
    """
    if exit_info.clean:
        return RetryDecision(Outcome.SUCCESS, retry_count)

    if exit_info.cancelled:
        return RetryDecision(Outcome.USER_CANCELLED, retry_count)

    detail = _last_error_line(diagnostics)

    if is_config_error(diagnostics):
        message = f"Fatal config error: {detail}" if detail else "Fatal config error"
        return RetryDecision(Outcome.FATAL, retry_count, message=message, error_type=ConfigurationError)

    if retry_count < max_retries:
        next_count = retry_count + 1
        return RetryDecision(Outcome.RETRYABLE, next_count, delay_ms=retry_delay_ms(next_count))

    message = f"{exit_info.describe()} after {retry_count} retries"
    if detail:
        message = f"{message}: {detail}"
    return RetryDecision(Outcome.FATAL, retry_count, message=message, error_type=TransientWorkerFailure)
