"""HTTP Accept-header content negotiation.

Inputs:
  - Raw Accept header values and the server's list of available media types.

Outputs:
  - The selected media type string, or None when nothing acceptable matches.
"""

from __future__ import annotations

import dataclasses
import re
from typing import List, Optional, Sequence

APPLICATION_JSON = "application/json"
TEXT_HTML = "text/html"

# Preference order when the client expresses no preference.
AVAILABLE_TYPES = (APPLICATION_JSON, TEXT_HTML)

_TOKEN_RE = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")


class AcceptParseError(ValueError):
    """Raised when an Accept header cannot be parsed."""


@dataclasses.dataclass(frozen=True)
class MediaRange:
    """Brief: One entry of an Accept header.

    Inputs (fields):
      - type: Main type ('text', '*').
      - subtype: Subtype ('html', '*').
      - quality: q value in [0, 1].
    """

    type: str
    subtype: str
    quality: float = 1.0

    def matches(self, media_type: str) -> bool:
        main, _, sub = media_type.partition("/")
        if self.type != "*" and self.type != main:
            return False
        return self.subtype == "*" or self.subtype == sub

    @property
    def specificity(self) -> int:
        if self.type == "*":
            return 0
        if self.subtype == "*":
            return 1
        return 2


def _parse_quality(value: str) -> float:
    try:
        quality = float(value)
    except ValueError:
        raise AcceptParseError(f"invalid quality value {value!r}") from None
    if not 0.0 <= quality <= 1.0:
        raise AcceptParseError(f"quality value {value!r} out of range")
    return quality


def parse_accept(header: str) -> List[MediaRange]:
    """Brief: Parse an Accept header into MediaRange entries.

    Inputs:
      - header: Raw header value, e.g. 'text/html,application/json;q=0.9'.

    Outputs:
      - list[MediaRange] in header order. Empty list entries are skipped.

    Raises:
      - AcceptParseError: For entries that are not 'type/subtype' tokens,
        '*/subtype' ranges, or invalid q values.

    Example:
      >>> parse_accept("text/*;q=0.5")
      [MediaRange(type='text', subtype='*', quality=0.5)]
    """

    ranges: List[MediaRange] = []
    for raw_entry in header.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue
        media, *params = [p.strip() for p in entry.split(";")]
        main, sep, sub = media.partition("/")
        main, sub = main.strip().lower(), sub.strip().lower()
        if not sep or not _TOKEN_RE.match(main) or not _TOKEN_RE.match(sub):
            raise AcceptParseError(f"invalid media range {media!r}")
        if main == "*" and sub != "*":
            raise AcceptParseError(f"invalid media range {media!r}")
        quality = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                quality = _parse_quality(value.strip())
                # Parameters after q are accept-extensions and carry no weight.
                break
        ranges.append(MediaRange(main, sub, quality))
    return ranges


def negotiate(
    accept_header: Optional[str], available: Sequence[str] = AVAILABLE_TYPES
) -> Optional[str]:
    """Brief: Choose the best available media type for an Accept header.

    Inputs:
      - accept_header: Raw Accept header or None.
      - available: Server media types in preference order.

    Outputs:
      - The chosen media type, or None when no available type is acceptable
        or the header is malformed.

    Notes:
      - An absent or blank header selects available[0].
      - Each available type takes the q value of its most specific matching
        range; the highest positive q wins and ties keep the available order.

    Example:
      >>> negotiate("text/html,application/xhtml+xml,*/*;q=0.8")
      'text/html'
      >>> negotiate("application/xml") is None
      True
    """

    if not available:
        return None
    if accept_header is None or not accept_header.strip():
        return available[0]
    try:
        ranges = parse_accept(accept_header)
    except AcceptParseError:
        return None

    best_type: Optional[str] = None
    best_quality = 0.0
    for media_type in available:
        matching = [r for r in ranges if r.matches(media_type)]
        if not matching:
            continue
        top = max(r.specificity for r in matching)
        quality = max(r.quality for r in matching if r.specificity == top)
        if quality > best_quality:
            best_type, best_quality = media_type, quality
    return best_type
