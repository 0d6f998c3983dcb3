"""Bounded polling policy with an escalating rescue-action table."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class RescueAction(str, Enum):
    WAIT = "wait"
    DISMISS = "dismiss"
    RELOAD = "reload"
    RENAVIGATE = "renavigate"


@dataclass(frozen=True)
class RetryPolicy:
    """`max_attempts` polling rounds; a failed round runs `escalation[round]` (default WAIT).

    Rounds are zero-based. The wait before round ``n + 1`` is
    ``interval_ms * backoff ** n`` capped at ``max_interval_ms``.
    """

    max_attempts: int
    interval_ms: int = 1000
    backoff: float = 1.0
    max_interval_ms: int = 10_000
    escalation: Mapping[int, RescueAction] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        for index in self.escalation:
            if not 0 <= index < self.max_attempts:
                raise ValueError(f"escalation round {index} outside 0..{self.max_attempts - 1}")

    def action_for(self, round_index: int) -> RescueAction:
        return self.escalation.get(round_index, RescueAction.WAIT)

    def delay_ms(self, round_index: int) -> int:
        return int(min(self.interval_ms * (self.backoff**round_index), self.max_interval_ms))

    def rounds(self) -> range:
        return range(self.max_attempts)

    def is_last_round(self, round_index: int) -> bool:
        return round_index >= self.max_attempts - 1
