"""
Ordered snapshot timestamps.

A repository uses exactly one representation for the timestamp part of its
snapshot names:
- EpochTimestamp: integer seconds since the Unix epoch, ordered numerically
- IsoTimestamp: UTC ISO-8601 string (YYYY-MM-DDTHH:MM:SSZ), ordered lexicographically

The two types refuse to compare with each other, so a repository can never
silently mix orderings.
"""

import re
from datetime import datetime, timezone
from functools import total_ordering


EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=timezone.utc)


@total_ordering
class SnapshotTimestamp:
    """Base class for the timestamp part of a snapshot name."""

    format_name = None

    def __init__(self, value):
        self.value = value

    @classmethod
    def parse(cls, text: str) -> 'SnapshotTimestamp':
        """Parse the canonical text form. Raises ValueError if malformed."""
        raise NotImplementedError

    @classmethod
    def from_datetime(cls, moment: datetime) -> 'SnapshotTimestamp':
        raise NotImplementedError

    def to_datetime(self) -> datetime:
        raise NotImplementedError

    def __str__(self):
        return str(self.value)

    def __repr__(self):
        return f'{type(self).__name__}({self.value!r})'

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.value == other.value

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.value < other.value

    def __hash__(self):
        return hash((type(self).__name__, self.value))


class EpochTimestamp(SnapshotTimestamp):
    """Integer epoch seconds."""

    format_name = 'epoch'
    _pattern = re.compile(r'^(0|[1-9][0-9]*)$')

    def __init__(self, value: int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Epoch timestamp must be a non-negative integer: {value!r}")
        super().__init__(value)

    @classmethod
    def parse(cls, text: str) -> 'EpochTimestamp':
        if not cls._pattern.match(text):
            raise ValueError(f"Not a canonical epoch timestamp: {text!r}")
        return cls(int(text))

    @classmethod
    def from_datetime(cls, moment: datetime) -> 'EpochTimestamp':
        return cls(int(_as_utc(moment).timestamp()))

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.value, tz=timezone.utc)


class IsoTimestamp(SnapshotTimestamp):
    """ISO-8601 UTC string with second resolution."""

    format_name = 'iso'
    _format = '%Y-%m-%dT%H:%M:%SZ'

    def __init__(self, value: str):
        # Validates and normalizes through strptime/strftime
        moment = datetime.strptime(value, self._format)
        if moment.strftime(self._format) != value:
            raise ValueError(f"Not a canonical ISO timestamp: {value!r}")
        super().__init__(value)

    @classmethod
    def parse(cls, text: str) -> 'IsoTimestamp':
        return cls(text)

    @classmethod
    def from_datetime(cls, moment: datetime) -> 'IsoTimestamp':
        return cls(_as_utc(moment).strftime(cls._format))

    def to_datetime(self) -> datetime:
        return datetime.strptime(self.value, self._format).replace(tzinfo=timezone.utc)


TIMESTAMP_FORMATS = {
    EpochTimestamp.format_name: EpochTimestamp,
    IsoTimestamp.format_name: IsoTimestamp,
}


def get_timestamp_class(format_name: str):
    """
    Look up the timestamp type for a configured format name.

    Raises:
        ValueError: If the format name is unknown
    """
    try:
        return TIMESTAMP_FORMATS[format_name]
    except KeyError:
        raise ValueError(
            f"Invalid timestamp format: {format_name}. "
            f"Valid options: {sorted(TIMESTAMP_FORMATS)}"
        )


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are treated as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
