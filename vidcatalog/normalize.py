"""Title cleaning and normalization.

Cleaning pipeline (clean_title):
1. Sanity-check the channel pattern against the raw title's structure
2. Split on the "|" separator and pick candidate segment(s)
3. Strip marketing phrases, [bracketed] notes, quality/format tokens,
   authenticity adjectives, dangling dashes, extra whitespace
4. Keep the shortest cleaned candidate

normalize_title() then produces the lowercase, punctuation-free form that
work groups are compared on.
"""

import logging
import re
from dataclasses import dataclass

from vidcatalog.config import (
    AUTHENTICITY_WORDS,
    FALLBACK_PATTERN_CONFIDENCE,
    MARKETING_PHRASES,
    NORMALIZED_NOISE_WORDS,
    PATTERN_CONFIDENCE_THRESHOLD,
    QUALITY_TOKENS,
    TITLE_SEPARATOR,
)

logger = logging.getLogger(__name__)

POSITION_FIRST = "first"
POSITION_LAST = "last"
POSITION_BOTH = "both"
POSITION_FULL = "full"


def _alternation(words):
    return "|".join(re.escape(w) for w in words)


_MARKETING_RE = re.compile(rf"\b(?:{_alternation(MARKETING_PHRASES)})\b", re.IGNORECASE)
_BRACKETED_RE = re.compile(r"\[.*?\]")
_QUALITY_RE = re.compile(rf"\b(?:{_alternation(QUALITY_TOKENS)})\b", re.IGNORECASE)
_AUTHENTICITY_RE = re.compile(rf"\b(?:{_alternation(AUTHENTICITY_WORDS)})\b", re.IGNORECASE)
_TRAILING_DASH_RE = re.compile(r"\s*[-–—|]\s*$")
_WS_RE = re.compile(r"\s+")

_PUNCT_RE = re.compile(r"[^\w\s]")
_NOISE_WORD_RE = re.compile(
    rf"\b(?:{_alternation(w.replace('-', '') for w in NORMALIZED_NOISE_WORDS)})\b"
)
_YEAR_RE = re.compile(r"\((\d{4})\)")


@dataclass(frozen=True)
class ChannelTitlePattern:
    """How a source channel lays out its titles.

    ``title_position`` is one of "first", "last", "both" (unsure, try
    both ends) or "full" (no separator, whole title).
    """

    separator: bool
    title_position: str = POSITION_FIRST
    confidence: float = 1.0
    pattern_type: str = None

    @classmethod
    def from_dict(cls, data):
        """Build a pattern from its stored form; None/empty gives None."""
        if not data:
            return None
        separator = data.get("separator", data.get("pipe_separator", False))
        return cls(
            separator=bool(separator),
            title_position=data.get("title_position") or POSITION_FIRST,
            confidence=float(data.get("confidence", 0.0) or 0.0),
            pattern_type=data.get("type"),
        )

    def to_dict(self):
        return {
            "type": self.pattern_type,
            "separator": self.separator,
            "title_position": self.title_position,
            "confidence": self.confidence,
        }


FALLBACK_PATTERN = ChannelTitlePattern(
    separator=True,
    title_position=POSITION_FIRST,
    confidence=FALLBACK_PATTERN_CONFIDENCE,
    pattern_type="first_segment_override",
)


def _first_and_last(segments):
    if len(segments) > 1:
        return [segments[0], segments[-1]]
    return [segments[0]]


def _candidate_segments(title, pattern):
    if TITLE_SEPARATOR not in title:
        return [title]

    segments = [s.strip() for s in title.split(TITLE_SEPARATOR)]
    if pattern is not None and pattern.separator \
       and pattern.title_position != POSITION_BOTH \
       and pattern.confidence >= PATTERN_CONFIDENCE_THRESHOLD:
        if pattern.title_position == POSITION_FIRST:
            return [segments[0]]
        if pattern.title_position == POSITION_LAST:
            return [segments[-1]]
    # No pattern, "both", low confidence, or no usable position: try both ends
    return _first_and_last(segments)


def strip_noise(candidate):
    """Remove upload noise (FULL MOVIE, [HD], 1080p, Official, ...) from one segment."""
    s = _MARKETING_RE.sub("", candidate)
    s = _BRACKETED_RE.sub("", s)
    s = _QUALITY_RE.sub("", s)
    s = _AUTHENTICITY_RE.sub("", s)
    s = _TRAILING_DASH_RE.sub("", s)
    return _WS_RE.sub(" ", s).strip()


def clean_title(raw, pattern=None):
    """Extract the bare work title from a raw upload title.

    ``pattern`` is an optional ChannelTitlePattern hint.  Always returns a
    string, empty when the input is empty or nothing but noise.
    """
    if not raw:
        return ""
    title = str(raw)

    # A stored pattern that says "no separator" is stale when the title has one
    if pattern is not None and not pattern.separator and TITLE_SEPARATOR in title:
        logger.warning("Pattern mismatch: pattern says no separator but title has one: %r "
                       "(pattern type %s); using first-segment fallback",
                       title, pattern.pattern_type)
        pattern = FALLBACK_PATTERN

    cleaned = [strip_noise(c) for c in _candidate_segments(title, pattern)]
    # A segment that was all noise ("| Full Movie HD") is not a title
    cleaned = [c for c in cleaned if c] or [""]
    # min() keeps the first candidate on ties
    return min(cleaned, key=len)


def normalize_title(title):
    """Lowercase, punctuation-free, noise-word-free form used for matching."""
    if not title:
        return ""
    s = _PUNCT_RE.sub("", str(title).lower())
    s = _NOISE_WORD_RE.sub("", s)
    return _WS_RE.sub(" ", s).strip()


def extract_year(title):
    """Return the year from a "Title (1999)" style string, or None."""
    if not title:
        return None
    match = _YEAR_RE.search(str(title))
    return int(match.group(1)) if match else None


def strip_year(title):
    """Drop "(1999)" style years: "Heat (1995)" → "Heat"."""
    return _WS_RE.sub(" ", _YEAR_RE.sub("", str(title or ""))).strip()
