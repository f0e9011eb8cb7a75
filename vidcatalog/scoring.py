"""Quality score (0-100) used to rank copies of the same work.

Score breakdown:
- Views:       0-40 points, log10(views) * 5  (1M → 30, 100M → 40)
- Reputation:  0-30 points, channel reputation (0-1) * 30
- Embeddable:  10 points
- Recency:     0-20 points, 20 for a fresh upload, 0 at two years old

Missing inputs contribute nothing.
"""

import math
from datetime import date, datetime, timezone

from vidcatalog.config import (
    DAYS_PER_YEAR,
    DEFAULT_CHANNEL_REPUTATION,
    EMBEDDABLE_POINTS,
    RECENCY_POINTS_MAX,
    RECENCY_POINTS_PER_YEAR,
    REPUTATION_POINTS_MAX,
    VIEW_POINTS_MAX,
    VIEW_POINTS_PER_DECADE,
)


def constant_reputation(value=DEFAULT_CHANNEL_REPUTATION):
    """Reputation model that rates every channel the same."""
    def reputation(source_id):
        return value
    return reputation


def parse_timestamp(value):
    """Parse a datetime, date, or ISO-8601 string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def view_points(view_count):
    if not view_count:
        return 0.0
    views = int(view_count)
    if views <= 0:
        return 0.0
    return min(math.log10(views) * VIEW_POINTS_PER_DECADE, VIEW_POINTS_MAX)


def reputation_points(reputation):
    if not reputation:
        return 0.0
    return min(max(float(reputation), 0.0), 1.0) * REPUTATION_POINTS_MAX


def recency_points(published_at, now=None):
    published = parse_timestamp(published_at)
    if published is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    years = (now - published).total_seconds() / 86400 / DAYS_PER_YEAR
    points = RECENCY_POINTS_MAX - years * RECENCY_POINTS_PER_YEAR
    return min(max(points, 0.0), RECENCY_POINTS_MAX)


def score_copy(view_count=None, channel_reputation=0.0, is_embeddable=False,
               published_at=None, now=None):
    """Return the integer quality score in [0, 100]."""
    score = (
        view_points(view_count)
        + reputation_points(channel_reputation)
        + (EMBEDDABLE_POINTS if is_embeddable else 0)
        + recency_points(published_at, now)
    )
    # Half-up rounding (round() would send 84.5 to 84)
    return int(math.floor(score + 0.5))


class QualityScorer:
    """Score copy records, looking channel reputation up by source id.

    ``reputation`` is any callable ``source_id -> float in [0, 1]``.
    """

    def __init__(self, reputation=None, clock=None):
        self.reputation = reputation or constant_reputation()
        self.clock = clock

    def score(self, copy):
        """Score a mapping or sqlite3.Row with copy columns."""
        copy = dict(copy)
        source_id = copy.get("source_id")
        channel_reputation = copy.get("channel_reputation")
        if channel_reputation is None:
            channel_reputation = self.reputation(source_id)
        return score_copy(
            view_count=copy.get("view_count"),
            channel_reputation=channel_reputation,
            is_embeddable=bool(copy.get("is_embeddable")),
            published_at=copy.get("published_at"),
            now=self.clock() if self.clock else None,
        )
