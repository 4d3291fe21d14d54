"""
Resource filters

A FilterSet is built once per query from (field-name, literal) pairs and is
checked against every resource entry. Field names are validated against the
resource kind before anything is decoded.

Literal forms:
    numeric fields:  5   5,7   10-20   1,3-5,0x10
    string fields:   RC   RC,UD
"""

from typing import Iterable, List, Tuple

from .errors import FilterError

NUMERIC = 'numeric'
STRING = 'string'
DERIVED = 'derived-string'

U64_MAX = (1 << 64) - 1


def _parse_number(token: str) -> int:
    token = token.strip()
    try:
        if token.lower().startswith('0x'):
            value = int(token, 16)
        else:
            value = int(token, 10)
    except ValueError:
        raise FilterError(f"Invalid numeric filter value '{token}'") from None
    if value < 0 or value > U64_MAX:
        raise FilterError(f"Numeric filter value '{token}' out of range")
    return value


def _parse_ranges(literal: str) -> List[Tuple[int, int]]:
    ranges = []
    for token in literal.split(','):
        if not token.strip():
            raise FilterError(f"Empty item in numeric filter value '{literal}'")
        lo, sep, hi = token.partition('-')
        if sep:
            low, high = _parse_number(lo), _parse_number(hi)
            if low > high:
                raise FilterError(f"Descending range '{token}' in filter value '{literal}'")
            ranges.append((low, high))
        else:
            value = _parse_number(token)
            ranges.append((value, value))
    return ranges


class FilterEntry:
    """One (field, accepted values) predicate"""

    __slots__ = ('name', 'kind', 'literal', 'ranges', 'strings')

    def __init__(self, name: str, kind: str, literal: str):
        self.name = name
        self.kind = kind
        self.literal = literal
        self.ranges = None
        self.strings = None

        if kind == NUMERIC:
            self.ranges = _parse_ranges(literal)
        else:
            self.strings = frozenset(literal.split(','))

    def __repr__(self):
        return f"FilterEntry({self.name}={self.literal!r}, {self.kind})"

    def accepts(self, value) -> bool:
        if self.kind == NUMERIC:
            value = int(value) & U64_MAX
            return any(lo <= value <= hi for lo, hi in self.ranges)
        return str(value) in self.strings


class FilterSet:
    """
    Ordered filter entries for one resource kind.

    Args:
        filterable: mapping of field name -> value kind (NUMERIC, STRING or
            DERIVED) accepted by the resource kind being queried
        pairs: iterable of (field name, literal value) from the caller

    Raises:
        FilterError: a name is not filterable for this kind, or a numeric
            literal cannot be parsed
    """

    def __init__(self, filterable, pairs: Iterable[Tuple[str, str]] = ()):
        self._entries: List[FilterEntry] = []

        for name, literal in pairs:
            if name not in filterable:
                valid = ', '.join(sorted(filterable))
                raise FilterError(f"Unknown filter '{name}'; valid filters are: {valid}")
            self._entries.append(FilterEntry(name, filterable[name], str(literal)))

        self._names = frozenset(entry.name for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def applies(self, name: str) -> bool:
        return name in self._names

    def matches(self, name: str, value) -> bool:
        """True when every filter on this field accepts value"""
        if name not in self._names:
            return True
        for entry in self._entries:
            if entry.name == name and not entry.accepts(value):
                return False
        return True


def parse_filter_args(args: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Turn 'name=value' strings into filter pairs.

    >>> parse_filter_args(['state=CONNECT', 'lqpn=1-10'])
    [('state', 'CONNECT'), ('lqpn', '1-10')]
    """
    pairs = []
    for arg in args:
        name, sep, value = arg.partition('=')
        if not sep or not name or not value:
            raise FilterError(f"Filter '{arg}' is not in name=value form")
        pairs.append((name, value))
    return pairs
