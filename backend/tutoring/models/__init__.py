"""
Models package for the tutoring scheduler backend.
Contains data models and type definitions.
"""
from tutoring.models.schedule_types import (
    ClassRequest,
    ClassSession,
    ConflictInfo,
    Person,
    TimeSlot,
    TimetableRow,
    Weekday,
    WEEKDAY_ORDER,
    format_clock,
    parse_clock,
    weekday_rank,
)

__all__ = [
    "ClassRequest",
    "ClassSession",
    "ConflictInfo",
    "Person",
    "TimeSlot",
    "TimetableRow",
    "Weekday",
    "WEEKDAY_ORDER",
    "format_clock",
    "parse_clock",
    "weekday_rank",
]
