"""Per-channel title layout detection.

Looks at a sample of a channel's upload titles and decides where the work
title sits among the "|"-separated segments:
- first_segment: "Movie Title (2019) | Genre | Actor | Channel"
- last_segment:  "Clickbait Description | Actual Movie Title"
- no_separator:  "Simple Movie Title (Year)"
- mixed:         inconsistent, clean_title() tries both ends
"""

import logging
import re
from datetime import datetime, timezone

from vidcatalog import db
from vidcatalog.config import (
    CHANNEL_NAME_SHARE_THRESHOLD,
    CHANNEL_NAME_WORDS,
    CLICKBAIT_WORDS,
    MIXED_PATTERN_CONFIDENCE,
    MIXED_PATTERN_GAP,
    SEPARATOR_USAGE_THRESHOLD,
    TITLE_SEPARATOR,
)
from vidcatalog.normalize import (
    POSITION_BOTH,
    POSITION_FIRST,
    POSITION_FULL,
    POSITION_LAST,
    ChannelTitlePattern,
)

logger = logging.getLogger(__name__)

_CHANNEL_NAME_RE = re.compile("|".join(re.escape(w) for w in CHANNEL_NAME_WORDS),
                              re.IGNORECASE)
_YEAR_PAREN_RE = re.compile(r"\(\d{4}\)")
_FULL_MOVIE_RE = re.compile(r"full movie", re.IGNORECASE)


def _mean(values):
    return sum(values) / len(values) if values else 0.0


def _segments(title):
    return [s.strip() for s in title.split(TITLE_SEPARATOR)]


def analyze_separators(titles):
    """Summarize how a channel uses the separator across sample titles."""
    with_sep = [t for t in titles if TITLE_SEPARATOR in t]
    if not titles or len(with_sep) <= len(titles) * SEPARATOR_USAGE_THRESHOLD:
        return {"has_separator": False}

    segment_counts = []
    first_lengths = []
    last_lengths = []
    channel_name_in_last = 0
    for title in with_sep:
        segments = _segments(title)
        segment_counts.append(len(segments))
        first_lengths.append(len(segments[0]))
        last_lengths.append(len(segments[-1]))
        if _CHANNEL_NAME_RE.search(segments[-1]):
            channel_name_in_last += 1

    return {
        "has_separator": True,
        "average_count": _mean(segment_counts),
        "first_avg_length": _mean(first_lengths),
        "last_avg_length": _mean(last_lengths),
        "channel_name_in_last": channel_name_in_last > len(with_sep) * CHANNEL_NAME_SHARE_THRESHOLD,
    }


def score_segment_as_title(segment):
    """Heuristic title-likeness of one segment (higher = more title-like)."""
    score = 0.0
    length = len(segment)
    if 10 <= length <= 50:
        score += 0.3
    elif length < 10 or length > 100:
        score -= 0.2

    if _YEAR_PAREN_RE.search(segment):
        score += 0.4

    lower = segment.lower()
    if any(word in lower for word in CLICKBAIT_WORDS):
        score -= 0.3
    if _CHANNEL_NAME_RE.search(segment):
        score -= 0.5
    if segment[:1].isupper():
        score += 0.1
    if ":" in segment or "." in segment:
        score += 0.1
    if _FULL_MOVIE_RE.search(segment):
        score -= 0.2
    return score


def determine_title_position(titles, separator_stats):
    """Return (type, title_position, confidence) for titles using the separator."""
    with_sep = [t for t in titles if TITLE_SEPARATOR in t]
    first_score = _mean([score_segment_as_title(_segments(t)[0]) for t in with_sep])
    last_score = _mean([score_segment_as_title(_segments(t)[-1]) for t in with_sep])

    if separator_stats["channel_name_in_last"]:
        first_score += 0.3

    first_len = separator_stats["first_avg_length"]
    last_len = separator_stats["last_avg_length"]
    if first_len > last_len * 1.5:
        last_score += 0.2
    elif last_len > first_len * 1.5:
        first_score += 0.2

    gap = abs(first_score - last_score)
    logger.debug("Segment scores: first=%.2f, last=%.2f", first_score, last_score)
    if gap < MIXED_PATTERN_GAP:
        return "mixed", POSITION_BOTH, MIXED_PATTERN_CONFIDENCE
    if first_score > last_score:
        return "first_segment", POSITION_FIRST, min(gap, 1.0)
    return "last_segment", POSITION_LAST, min(gap, 1.0)


def pattern_notes(pattern_type, separator_stats):
    if pattern_type == "no_separator":
        return "Channel uses simple titles without separators"
    if pattern_type == "mixed":
        return "Channel has inconsistent title layouts; extraction tries both ends"
    if pattern_type == "first_segment":
        tail = ("Genre | Actor | Channel Name" if separator_stats.get("channel_name_in_last")
                else "Additional Info")
        return f"Channel uses format: Movie Title | {tail}"
    if pattern_type == "last_segment":
        return "Channel uses format: Clickbait Description | Actual Movie Title"
    return "Unknown pattern structure"


def analyze_titles(titles):
    """Infer a channel's title pattern from sample titles.

    Returns the storable pattern dict (type, separator, title_position,
    confidence, notes, sample_count, segments, analyzed_at).  Raises
    ValueError for an empty sample.
    """
    titles = [t for t in titles if t]
    if not titles:
        raise ValueError("No titles to analyze")

    stats = analyze_separators(titles)
    if stats["has_separator"]:
        pattern_type, position, confidence = determine_title_position(titles, stats)
        segments = {k: stats[k] for k in ("average_count", "first_avg_length",
                                          "last_avg_length", "channel_name_in_last")}
    else:
        pattern_type, position, confidence = "no_separator", POSITION_FULL, 1.0
        segments = None

    return {
        "type": pattern_type,
        "separator": stats["has_separator"],
        "title_position": position,
        "confidence": round(confidence, 3),
        "notes": pattern_notes(pattern_type, stats),
        "sample_count": len(titles),
        "segments": segments,
        "analyzed_at": datetime.now(timezone.utc).isoformat(),
    }


def store_pattern(conn, channel_id, pattern):
    with db.transaction(conn):
        db.set_channel_pattern(conn, channel_id, pattern)
    logger.info("Stored %s pattern for channel %s (confidence %.2f)",
                pattern["type"], channel_id, pattern["confidence"])


def analyze_channel(conn, channel_id, titles):
    """Analyze sample titles, store the pattern, and return it."""
    pattern = analyze_titles(titles)
    store_pattern(conn, channel_id, pattern)
    return pattern


class StoredPatternSupplier:
    """Pattern supplier backed by the channels table.

    Callable as ``supplier(source_id)``; returns a ChannelTitlePattern or
    None when the channel was never analyzed.
    """

    def __init__(self, conn):
        self.conn = conn

    def __call__(self, source_id):
        if source_id is None:
            return None
        return ChannelTitlePattern.from_dict(db.get_channel_pattern(self.conn, source_id))
