# src/datamanager/engine/stop_conditions.py
"""Stopping rules of the iterative drain loop.

Each rule is an independent predicate. IterativeDrainRunner evaluates them
after every round in the order of DRAIN_STOP_RULES; the first one that
fires ends the run. The drained check runs on each fresh retrieval.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from datamanager.contracts.enums import StopReason


@dataclass(frozen=True, slots=True)
class RoundObservation:
    """What the drain loop knows after one round.

    Attributes:
        last_count: Records retrieved by the previous round (page limit
            before the first round)
        current_count: Records retrieved by this round
        processed_count: Records handed to the workers (after prepare_data)
        page_limit: Configured page limit
        failures: Records of this round that ended in failure
        elapsed: Wall-clock time since the run started
        max_duration: Configured wall-clock budget
    """

    last_count: int
    current_count: int
    processed_count: int
    page_limit: int
    failures: int
    elapsed: timedelta
    max_duration: timedelta


def is_stagnant(last_count: int, current_count: int, page_limit: int) -> bool:
    """Two consecutive rounds returned the same short page.

    A full page (count == page_limit) never counts as stagnation: more
    records may be waiting behind it.
    """
    return last_count < page_limit and last_count == current_count


def exceeded_duration(elapsed: timedelta, max_duration: timedelta) -> bool:
    return elapsed >= max_duration


def all_failed(processed_count: int, failures: int) -> bool:
    """Every record of a non-empty round failed."""
    return processed_count > 0 and failures >= processed_count


def is_drained(retrieved_count: int) -> bool:
    return retrieved_count == 0


@dataclass(frozen=True, slots=True)
class StopDecision:
    reason: StopReason
    success: bool


DRAIN_STOP_RULES: tuple[tuple[StopReason, bool], ...] = (
    (StopReason.STAGNATION, True),
    (StopReason.MAX_DURATION, True),
    (StopReason.ALL_FAILED, False),
)


def _fires(reason: StopReason, observation: RoundObservation) -> bool:
    if reason is StopReason.STAGNATION:
        return is_stagnant(observation.last_count, observation.current_count, observation.page_limit)
    if reason is StopReason.MAX_DURATION:
        return exceeded_duration(observation.elapsed, observation.max_duration)
    if reason is StopReason.ALL_FAILED:
        return all_failed(observation.processed_count, observation.failures)
    raise ValueError(f"No stop rule for {reason}")


def evaluate_round(observation: RoundObservation) -> StopDecision | None:
    """First stop rule that fires after a round, or None to keep going."""
    for reason, success in DRAIN_STOP_RULES:
        if _fires(reason, observation):
            return StopDecision(reason, success)
    return None
