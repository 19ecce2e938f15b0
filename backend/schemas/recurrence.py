"""Typed recurrence configuration for a medication order.

A RecurrenceConfig is validated when it is built, so the schedule generator
never has to parse free text. Named day-parts are resolved to clock times
against the school's configured defaults (see crud.app_config).
"""

from datetime import date, time
from typing import Dict, FrozenSet, List
import enum

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator, model_validator

from exceptions import ValidationError


class DayPart(str, enum.Enum):
    BEFORE_BREAKFAST = "BEFORE_BREAKFAST"
    AFTER_BREAKFAST = "AFTER_BREAKFAST"
    BEFORE_LUNCH = "BEFORE_LUNCH"
    AFTER_LUNCH = "AFTER_LUNCH"
    BEFORE_DINNER = "BEFORE_DINNER"
    AFTER_DINNER = "AFTER_DINNER"
    BEFORE_BED = "BEFORE_BED"


def parse_clock(value: str) -> time:
    """Parse 'HH:MM' (seconds allowed and ignored) into a time; raises ValueError on anything else."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"'{value}' is not a HH:MM time")
    hour, minute = int(parts[0]), int(parts[1])
    return time(hour, minute)


class RecurrenceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency_count: int
    specific_times: List[time] = []
    day_parts: List[DayPart] = []
    skip_weekends: bool = False
    skip_dates: FrozenSet[date] = frozenset()

    @field_validator('specific_times', mode='before')
    @classmethod
    def parse_specific_times(cls, value):
        if value is None:
            return []
        return [parse_clock(v) if isinstance(v, str) else v for v in value]

    @field_validator('frequency_count')
    @classmethod
    def frequency_must_be_positive(cls, value):
        if value <= 0:
            raise ValueError("frequency count must be positive")
        return value

    @field_validator('specific_times')
    @classmethod
    def times_must_be_unique(cls, value):
        if len(set(value)) != len(value):
            raise ValueError("duplicate time of day")
        return sorted(value)

    @field_validator('day_parts')
    @classmethod
    def day_parts_must_be_unique(cls, value):
        if len(set(value)) != len(value):
            raise ValueError("duplicate day-part")
        return value

    @model_validator(mode='after')
    def frequency_matches_times(self):
        entries = self.specific_times or self.day_parts
        if not entries:
            raise ValueError("at least one time of day or day-part is required")
        if len(entries) != self.frequency_count:
            raise ValueError(
                f"frequency count {self.frequency_count} does not match {len(entries)} time(s) of day"
            )
        return self

    @classmethod
    def build(cls, **data) -> "RecurrenceConfig":
        """Construct, turning pydantic errors into the engine's ValidationError."""
        try:
            return cls(**data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "recurrence"
            raise ValidationError(field, first.get("msg", "invalid recurrence configuration")) from e

    @classmethod
    def from_order(cls, order) -> "RecurrenceConfig":
        return cls.build(
            frequency_count=order.frequency_count,
            specific_times=list(order.specific_times or []),
            day_parts=list(order.day_parts or []),
            skip_weekends=bool(order.skip_weekends),
            skip_dates=[date.fromisoformat(d) for d in (order.skip_dates or [])],
        )

    def resolved_times(self, day_part_times: Dict[str, str]) -> List[time]:
        """Clock times for one day, ascending. Explicit times win over day-parts."""
        if self.specific_times:
            return list(self.specific_times)
        resolved = []
        for part in self.day_parts:
            raw = day_part_times.get(part.value)
            if raw is None:
                raise ValidationError("day_parts", f"no default time configured for {part.value}")
            try:
                resolved.append(parse_clock(raw))
            except ValueError as e:
                raise ValidationError("day_parts", str(e))
        if len(set(resolved)) != len(resolved):
            raise ValidationError("day_parts", "two day-parts resolve to the same time")
        return sorted(resolved)

    def is_skipped(self, day: date) -> bool:
        if self.skip_weekends and day.weekday() >= 5:
            return True
        return day in self.skip_dates

    def to_columns(self) -> dict:
        """Column values for MedicationOrder."""
        return {
            "frequency_count": self.frequency_count,
            "specific_times": [t.strftime("%H:%M") for t in self.specific_times],
            "day_parts": [p.value for p in self.day_parts],
            "skip_weekends": self.skip_weekends,
            "skip_dates": sorted(d.isoformat() for d in self.skip_dates),
        }
