"""Reminder policy: per-priority lead times before a task's due time."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from reminders.domain import Priority
from reminders.errors import ConfigurationError

DEFAULT_LEAD_TIMES: dict[str, list[int]] = {
    Priority.HIGH.value: [24, 12, 6, 2],
    Priority.MEDIUM.value: [24, 4],
    Priority.LOW.value: [24],
}


@dataclass(frozen=True)
class ReminderPolicy:
    """Validated lead-time table keyed by priority."""

    lead_times: Mapping[Priority, tuple[int, ...]]

    @staticmethod
    def from_mapping(raw: Mapping[str, Iterable[int]]) -> "ReminderPolicy":
        """Build a policy from a priority -> hours mapping, validating every entry."""
        parsed: dict[Priority, tuple[int, ...]] = {}
        for key, values in raw.items():
            try:
                priority = Priority(str(key).strip().lower())
            except ValueError as exc:
                raise ConfigurationError(f"Unknown priority in reminder policy: {key!r}") from exc
            parsed[priority] = _validate_sequence(priority, values)

        missing = [priority.value for priority in Priority if priority not in parsed]
        if missing:
            raise ConfigurationError(
                f"Reminder policy is missing lead times for priorities: {', '.join(missing)}"
            )
        return ReminderPolicy(lead_times=parsed)

    @staticmethod
    def default() -> "ReminderPolicy":
        """Return the built-in default policy."""
        return ReminderPolicy.from_mapping(DEFAULT_LEAD_TIMES)

    def lead_times_for(self, priority: Priority | str) -> tuple[int, ...]:
        """Return the ordered lead times for a priority."""
        try:
            resolved = Priority(priority)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown priority: {priority!r}") from exc
        sequence = self.lead_times.get(resolved)
        if not sequence:
            raise ConfigurationError(f"No reminder policy configured for priority={resolved.value}")
        return sequence

    def final_lead_times(self) -> dict[Priority, int]:
        """Return the smallest lead time per priority."""
        return {priority: values[-1] for priority, values in self.lead_times.items()}

    def as_dict(self) -> dict[str, list[int]]:
        """Return a plain mapping suitable for display or serialization."""
        return {priority.value: list(values) for priority, values in self.lead_times.items()}


def _validate_sequence(priority: Priority, values: Iterable[int]) -> tuple[int, ...]:
    """Ensure a lead-time sequence is non-empty, positive, and strictly decreasing."""
    try:
        sequence = tuple(int(value) for value in values)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Lead times for priority={priority.value} must be integers."
        ) from exc
    if not sequence:
        raise ConfigurationError(f"Lead times for priority={priority.value} must not be empty.")
    if any(value <= 0 for value in sequence):
        raise ConfigurationError(f"Lead times for priority={priority.value} must be positive.")
    for previous, current in zip(sequence, sequence[1:]):
        if current >= previous:
            raise ConfigurationError(
                f"Lead times for priority={priority.value} must be strictly decreasing: "
                f"{list(sequence)}"
            )
    return sequence
