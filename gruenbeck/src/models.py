"""
Data models for daily water readings and dispatched gauge samples.

``Reading`` and ``SampleBatch`` are ephemeral: they live only within one poll
cycle. ``GaugeSample`` is the unit handed to the metric sink; it is a pydantic
model so it can be serialized straight into the spool as JSON.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

HISTORY_DAYS: int = 14
"""Number of daily fields (``D_Y_2_1`` .. ``D_Y_2_14``) the device exposes."""

PLUGIN_NAME: str = "gruenbeck"
GAUGE_TYPE: str = "gauge"
TYPE_INSTANCE: str = "water"


@dataclass(frozen=True, slots=True)
class Reading:
    """Water consumption for a single calendar day.

    Attributes:
        day_index: 0 for the most recent day, 13 for the oldest. Derived from
            the device field name ``D_Y_2_<n>`` as ``n - 1``.
        value: Raw integer gauge value reported by the device.
    """

    day_index: int
    value: int


@dataclass(frozen=True, slots=True)
class SampleBatch:
    """Readings extracted from one device response, ordered newest first.

    Holds exactly ``HISTORY_DAYS`` readings in history mode, or a single
    reading (index 0) in single-value mode. Days the device did not report
    carry a value of 0.
    """

    readings: tuple[Reading, ...]

    @classmethod
    def from_values(cls, values: list[int]) -> SampleBatch:
        """Build a batch from a positional value list (index 0 = newest)."""
        return cls(tuple(Reading(day_index=i, value=v) for i, v in enumerate(values)))

    @property
    def newest(self) -> Reading:
        """The most recent day's reading."""
        return self.readings[0]

    @property
    def values(self) -> list[int]:
        return [r.value for r in self.readings]

    def __len__(self) -> int:
        return len(self.readings)


class GaugeSample(BaseModel):
    """A single gauge sample dispatched to the monitoring pipeline.

    The timestamp is explicit and usually backdated: back-filled days carry
    the 23:00 boundary of the day they describe, not the dispatch time.

    Attributes:
        plugin: Fixed plugin identity (``"gruenbeck"``).
        type: Metric type (``"gauge"``).
        type_instance: Metric instance (``"water"``).
        ts: Timestamp the value belongs to.
        value: Gauge value.
    """

    plugin: str = PLUGIN_NAME
    type: str = GAUGE_TYPE
    type_instance: str = TYPE_INSTANCE
    ts: datetime
    value: float
