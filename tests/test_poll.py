import pytest

from mediagen.errors import PollTimeoutError, UpstreamError
from mediagen.poll import (FAL_STATES, POLL_INTERVAL, POLL_MAX_ATTEMPTS, REPLICATE_STATES, WAVESPEED_STATES,
                           JobState, map_state, poll_until_terminal)


def _script(*states):
    """A check() that walks through the given (state, payload) pairs."""
    calls = []
    seq = iter(states)

    def check():
        calls.append(1)
        return next(seq)

    return check, calls


def test_completes_after_four_checks_with_three_sleeps():
    check, calls = _script(
        (JobState.IN_QUEUE, {}),
        (JobState.PROCESSING, {}),
        (JobState.PROCESSING, {}),
        (JobState.COMPLETED, {"outputs": ["u"]}),
    )
    sleeps = []
    assert poll_until_terminal(check, sleep=sleeps.append) == {"outputs": ["u"]}
    assert len(calls) == 4
    assert sleeps == [POLL_INTERVAL] * 3


def test_timeout_after_max_attempts():
    calls = []

    def check():
        calls.append(1)
        return JobState.PROCESSING, {}

    sleeps = []
    with pytest.raises(PollTimeoutError) as e:
        poll_until_terminal(check, sleep=sleeps.append)
    assert len(calls) == POLL_MAX_ATTEMPTS == 60
    assert len(sleeps) == 59
    assert e.value.attempts == 60
    assert isinstance(e.value, UpstreamError)


def test_failed_state_raises_upstream_error():
    check, calls = _script((JobState.PROCESSING, {}), (JobState.FAILED, {"error": "nsfw detected"}))
    with pytest.raises(UpstreamError, match="nsfw detected"):
        poll_until_terminal(check, sleep=lambda s: None)
    assert len(calls) == 2


def test_on_update_sees_every_attempt():
    check, _ = _script((JobState.IN_QUEUE, 1), (JobState.COMPLETED, 2))
    seen = []
    poll_until_terminal(check, sleep=lambda s: None, on_update=lambda n, state, p: seen.append((n, state)))
    assert seen == [(1, JobState.IN_QUEUE), (2, JobState.COMPLETED)]


def test_default_sleep_is_patchable(no_sleep):
    check, _ = _script((JobState.IN_QUEUE, {}), (JobState.COMPLETED, {}))
    poll_until_terminal(check, interval=0.5)
    assert no_sleep == [0.5]


@pytest.mark.parametrize(
    "status, table, state",
    [
        ("created", WAVESPEED_STATES, JobState.IN_QUEUE),
        ("completed", WAVESPEED_STATES, JobState.COMPLETED),
        ("failed", WAVESPEED_STATES, JobState.FAILED),
        ("starting", REPLICATE_STATES, JobState.IN_QUEUE),
        ("succeeded", REPLICATE_STATES, JobState.COMPLETED),
        ("canceled", REPLICATE_STATES, JobState.FAILED),
        ("InProgress", FAL_STATES, JobState.PROCESSING),
        ("whatever", WAVESPEED_STATES, JobState.IN_QUEUE),
        (None, REPLICATE_STATES, JobState.IN_QUEUE),
    ],
)
def test_map_state(status, table, state):
    assert map_state(status, table) is state


def test_terminal_states():
    assert JobState.COMPLETED.terminal and JobState.FAILED.terminal
    assert not JobState.SUBMITTED.terminal
