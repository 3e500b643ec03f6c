"""
Split a Showdown battle log into typed events.

Lines look like ``|switch|p1a: Pikachu|Pikachu, L50, M|100/100``. The field
after the leading separator is the kind; everything after it is passed
through untouched. Nothing here raises on bad input: the log comes from a
server we don't control, so unknown or broken lines become OTHER events and
keep their position.
"""

from dataclasses import dataclass
from typing import List, Tuple

from constants import FIELD_SEPARATOR, EventKind

_KNOWN_KINDS = {kind.value: kind for kind in EventKind if kind is not EventKind.OTHER}


@dataclass(frozen=True)
class RawEvent:
    kind: EventKind
    fields: Tuple[str, ...]
    line_number: int
    raw: str

    def field(self, index: int, default: str = "") -> str:
        if 0 <= index < len(self.fields):
            return self.fields[index]
        return default


def tokenize_line(line: str, line_number: int = 0) -> RawEvent:
    stripped = line.rstrip("\r")
    if not stripped.startswith(FIELD_SEPARATOR):
        return RawEvent(EventKind.OTHER, (), line_number, stripped)

    parts = stripped.split(FIELD_SEPARATOR)
    # parts[0] is the empty string before the leading separator
    kind = _KNOWN_KINDS.get(parts[1] if len(parts) > 1 else "", EventKind.OTHER)
    if kind is EventKind.OTHER:
        return RawEvent(EventKind.OTHER, tuple(parts[1:]), line_number, stripped)
    return RawEvent(kind, tuple(parts[2:]), line_number, stripped)


def tokenize(log_text: str) -> List[RawEvent]:
    """Return every line of ``log_text`` as a RawEvent, in order."""
    if not log_text:
        return []
    return [
        tokenize_line(line, line_number)
        for line_number, line in enumerate(log_text.split("\n"), start=1)
    ]
