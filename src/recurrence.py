"""Recurrence descriptor and its canonical rule string."""

from __future__ import annotations

from enum import Enum

from sqlmodel import SQLModel


class Frequency(str, Enum):
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RecurrenceDescriptor(SQLModel, table=False):
    """Input-only description of how a task repeats."""

    frequency: Frequency = Frequency.NONE
    interval: int | None = None  # weeks for WEEKLY, months for MONTHLY, ...
    count: int | None = None  # number of occurrences


def compile_rule(descriptor: RecurrenceDescriptor | None) -> str | None:
    """Return ``FREQ=..;INTERVAL=..;COUNT=..`` or None for one-off tasks.

    Parts are always emitted in the same order, so equal descriptors compile to
    equal strings and calendar updates can compare rules directly.
    """
    if descriptor is None or descriptor.frequency == Frequency.NONE:
        return None
    parts = [f"FREQ={Frequency(descriptor.frequency).value}"]
    if descriptor.interval and descriptor.interval > 0:
        parts.append(f"INTERVAL={descriptor.interval}")
    if descriptor.count and descriptor.count > 0:
        parts.append(f"COUNT={descriptor.count}")
    return ";".join(parts)
