"""Scheduling and preparation of metric value posts."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Mapping

logger = logging.getLogger(__name__)

POST_METRICS_INTERVAL = 60
"""Seconds between metric collections."""

POST_METRICS_DEQUEUE_DELAY_SECONDS = 30
"""Delay before posting when more values are already queued."""

POST_METRICS_RETRY_DELAY_SECONDS = 60
"""Delay before posting again after a failed post."""

POST_METRICS_RETRY_MAX = 60
"""Number of retries after which queued values are abandoned."""

POST_METRICS_BUFFER_SIZE = 6 * 60
"""Number of queued posts kept (six hours of values)."""


class LoopState(enum.Enum):
    """State of the metric posting loop."""

    FIRST = enum.auto()
    DEFAULT = enum.auto()
    QUEUED = enum.auto()
    HAD_ERROR = enum.auto()
    TERMINATING = enum.auto()


@dataclass(frozen=True)
class MetricValue:
    """One metric value of one host at one time."""

    host_id: str
    name: str
    time: int
    value: float


@dataclass
class PostValue:
    """A batch of metric values waiting to be posted, with its retry count."""

    values: list[MetricValue] = field(default_factory=list)
    retry_count: int = 0

    def record_failure(self) -> bool:
        """Count a failed post; return whether the batch should still be retried."""
        self.retry_count += 1
        if self.retry_count > POST_METRICS_RETRY_MAX:
            logger.error(
                "Post values may be invalid and abandoned: %r", self.values
            )
            return False
        return True


def post_delay_seconds(
    state: LoopState,
    host_delay: int,
    now: float,
    interval: int = POST_METRICS_INTERVAL,
) -> int:
    """Seconds to wait before the next post, given the loop state.

    In the default state the wait spreads posts of different hosts over the
    interval, using the host-specific delay.
    """
    if state is LoopState.FIRST:
        return 0
    if state is LoopState.QUEUED:
        return POST_METRICS_DEQUEUE_DELAY_SECONDS
    if state is LoopState.HAD_ERROR:
        return POST_METRICS_RETRY_DELAY_SECONDS
    if state is LoopState.TERMINATING:
        return 1
    elapsed = int(now) % interval
    return host_delay - elapsed if host_delay > elapsed else 0


def next_loop_state(state: LoopState, queue_length: int) -> LoopState:
    """State the loop moves to after taking a batch from the queue."""
    if state is LoopState.TERMINATING:
        return state
    return LoopState.QUEUED if queue_length > 0 else LoopState.DEFAULT


def build_metric_values(
    host_id: str,
    custom_identifier_hosts: Mapping[str, str],
    values: Mapping[str, float],
    custom_identifier: str | None,
    created: int,
) -> list[MetricValue]:
    """Turn generated values into postable metric values.

    Values of an unknown custom identifier are dropped, as are NaN and
    infinite values.
    """
    if custom_identifier is not None:
        target = custom_identifier_hosts.get(custom_identifier)
        if target is None:
            return []
        host_id = target

    result = []
    for name, value in values.items():
        if math.isnan(value) or math.isinf(value):
            logger.warning(
                "Invalid value: hostID = %s, name = %s, value = %f is not sent.",
                host_id,
                name,
                value,
            )
            continue
        result.append(MetricValue(host_id, name, created, value))
    return result