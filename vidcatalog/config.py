"""Constants, thresholds, and API URLs."""

import os
from dataclasses import dataclass

# ── Paths ──────────────────────────────────────────────────────────────
DB_DIR = os.path.expanduser("~/.vidcatalog")
DB_PATH = os.environ.get("VIDCATALOG_DB") or os.path.join(DB_DIR, "vidcatalog.db")
OMDB_CACHE_DIR = os.path.join(DB_DIR, "cache_omdb")

# ── Title structure ────────────────────────────────────────────────────
# Field separator the platform's uploaders put between title segments:
#   "Movie Title (2017) | Genre | Actor | Channel"
TITLE_SEPARATOR = "|"

# Patterns below this confidence hedge by trying first AND last segment
PATTERN_CONFIDENCE_THRESHOLD = 0.7
# Substituted when a stored pattern says "no separator" but the title has one
FALLBACK_PATTERN_CONFIDENCE = 0.6

# ── Title noise ────────────────────────────────────────────────────────
MARKETING_PHRASES = ("full movie", "complete film", "full film", "feature film")
QUALITY_TOKENS = ("HD", "4K", "1080p", "720p", "480p", "DVD", "BLURAY", "BLU-RAY")
AUTHENTICITY_WORDS = ("official", "original", "remastered", "restored")

# Dropped from normalized titles before similarity comparison
NORMALIZED_NOISE_WORDS = (
    "the", "a", "an", "full", "movie",
    "hd", "4k", "1080p", "720p", "dvd", "bluray", "blu-ray",
)

# ── Group matching ─────────────────────────────────────────────────────
FUZZY_MATCH_THRESHOLD = 0.7   # minimum trigram similarity (0-1)
YEAR_TOLERANCE = 1            # ± years; remakes further apart never match

# ── Quality scoring ────────────────────────────────────────────────────
# Four terms, each capped, summing to at most 100.
VIEW_POINTS_PER_DECADE = 5    # log10(views) * 5
VIEW_POINTS_MAX = 40
REPUTATION_POINTS_MAX = 30
EMBEDDABLE_POINTS = 10
RECENCY_POINTS_MAX = 20
RECENCY_POINTS_PER_YEAR = 10  # 0 points once a copy is 2 years old
DAYS_PER_YEAR = 365

# Placeholder until a real channel reputation model exists
DEFAULT_CHANNEL_REPUTATION = 0.5

# ── Channel pattern detection ──────────────────────────────────────────
PATTERN_SAMPLE_SIZE = 25
SEPARATOR_USAGE_THRESHOLD = 0.7   # share of titles that must use "|"
CHANNEL_NAME_SHARE_THRESHOLD = 0.7
MIXED_PATTERN_GAP = 0.3           # score gap below this → "mixed"
MIXED_PATTERN_CONFIDENCE = 0.5

CHANNEL_NAME_WORDS = ("the midnight screening", "free movies", "contv",
                      "cinema", "channel")
CLICKBAIT_WORDS = (
    "best", "worst", "top", "amazing", "incredible", "must watch",
    "you won't believe", "shocking", "epic", "ultimate", "legendary",
    "rare", "vs", "versus", "battle", "when", "how", "why", "what",
)

# ── OMDb (external catalog ids) ────────────────────────────────────────
OMDB_API_BASE = "https://www.omdbapi.com/"
OMDB_API_KEY = os.environ.get("OMDB_API_KEY")
OMDB_USER_AGENT = "VidCatalogBot/1.0 (catalog deduplication)"
OMDB_RATE_LIMIT = 0.2          # seconds between requests
OMDB_CACHE_MAX_AGE = 30 * 86400

# ── Maintenance ────────────────────────────────────────────────────────
FIX_TITLES_WORKERS = 8


@dataclass(frozen=True)
class MatchConfig:
    """Matching options threaded into the resolver and ingestion pipeline."""

    fuzzy_match_threshold: float = FUZZY_MATCH_THRESHOLD
    year_tolerance: int = YEAR_TOLERANCE

    def __post_init__(self):
        if not 0.0 <= self.fuzzy_match_threshold <= 1.0:
            raise ValueError(
                f"fuzzy_match_threshold must be in [0, 1], got {self.fuzzy_match_threshold}"
            )
        if isinstance(self.year_tolerance, bool) or not isinstance(self.year_tolerance, int) \
           or self.year_tolerance < 0:
            raise ValueError(
                f"year_tolerance must be a non-negative integer, got {self.year_tolerance!r}"
            )
