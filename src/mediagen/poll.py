"""Fixed-interval submit/poll loop shared by the asynchronous providers."""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Callable, Mapping, Optional, Tuple

from .errors import PollTimeoutError, UpstreamError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0  # seconds
POLL_MAX_ATTEMPTS = 60  # ~120s


class JobState(enum.Enum):
    SUBMITTED = "SUBMITTED"
    IN_QUEUE = "IN_QUEUE"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


# Provider status strings -> JobState
WAVESPEED_STATES = {
    "created": JobState.IN_QUEUE,
    "processing": JobState.PROCESSING,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
}

REPLICATE_STATES = {
    "starting": JobState.IN_QUEUE,
    "processing": JobState.PROCESSING,
    "succeeded": JobState.COMPLETED,
    "failed": JobState.FAILED,
    "canceled": JobState.FAILED,
}

# fal_client status objects are matched by class name
FAL_STATES = {
    "Queued": JobState.IN_QUEUE,
    "InProgress": JobState.PROCESSING,
    "Completed": JobState.COMPLETED,
}


def map_state(status: Optional[str], table: Mapping[str, JobState]) -> JobState:
    """Unknown or missing statuses count as still queued."""
    return table.get((status or "").strip(), JobState.IN_QUEUE)


Check = Callable[[], Tuple[JobState, Any]]


def poll_until_terminal(check: Check, *, interval: float = POLL_INTERVAL, max_attempts: int = POLL_MAX_ATTEMPTS,
                        sleep: Optional[Callable[[float], None]] = None,
                        on_update: Optional[Callable[[int, JobState, Any], None]] = None):
    """Call ``check`` until it reports a terminal state.

    ``check`` returns ``(state, payload)``. COMPLETED returns the payload,
    FAILED raises UpstreamError, anything else sleeps ``interval`` seconds and
    tries again. After ``max_attempts`` checks without a terminal state,
    PollTimeoutError is raised. There is no backoff and no cancellation.
    """
    sleep = sleep or time.sleep
    for attempt in range(1, max_attempts + 1):
        state, payload = check()
        logger.debug("Polling attempt %d: %s", attempt, state.value)
        if on_update is not None:
            on_update(attempt, state, payload)

        if state is JobState.COMPLETED:
            return payload
        if state is JobState.FAILED:
            reason = payload.get("error") if isinstance(payload, Mapping) else None
            raise UpstreamError(f"Generation failed: {reason or 'Unknown error'}", detail=payload)

        if attempt < max_attempts:
            sleep(interval)

    raise PollTimeoutError(max_attempts, interval)
