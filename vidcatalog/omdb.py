"""OMDb lookups for external catalog ids (IMDb ids).

Used during ingestion to give a copy an external id when its source
metadata has none, so later copies of the same work group on the id
instead of on fuzzy titles.  Lookups are cached on disk, including
misses.  Any HTTP failure is logged and treated as "no match".
"""

import logging
import re

import requests

from vidcatalog.cache import LookupCache, lookup_key
from vidcatalog.config import (
    OMDB_API_BASE,
    OMDB_API_KEY,
    OMDB_CACHE_DIR,
    OMDB_CACHE_MAX_AGE,
    OMDB_RATE_LIMIT,
    OMDB_USER_AGENT,
)
from vidcatalog.http_utils import create_session, get_json

logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"(\d{4})")


def parse_year(value):
    """OMDb years look like "2017" or "2017–2019"; return the first year."""
    if not value or value == "N/A":
        return None
    match = _YEAR_RE.search(str(value))
    return int(match.group(1)) if match else None


def transform_response(data):
    """Map an OMDb response to ``{external_id, title, release_year}`` or None."""
    if not data or data.get("Response") == "False" or not data.get("imdbID"):
        return None
    return {
        "external_id": data["imdbID"],
        "title": data.get("Title"),
        "release_year": parse_year(data.get("Year")),
    }


class OmdbClient:
    def __init__(self, api_key=None, session=None, cache_dir=OMDB_CACHE_DIR,
                 use_cache=True, rate_limit=OMDB_RATE_LIMIT):
        self.api_key = api_key if api_key is not None else OMDB_API_KEY
        self.session = session
        self.cache = LookupCache(cache_dir, OMDB_CACHE_MAX_AGE) if use_cache else None
        self.rate_limit = rate_limit
        self._warned_no_key = False

    def _session(self):
        if self.session is None:
            self.session = create_session(OMDB_USER_AGENT)
        return self.session

    def lookup(self, title, year=None):
        """Look a movie up by title (and year).  Returns a dict or None."""
        if not title:
            return None
        if not self.api_key:
            if not self._warned_no_key:
                logger.warning("OMDb API key not configured; skipping catalog lookups")
                self._warned_no_key = True
            return None

        key = lookup_key("title", title, year)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return transform_response(cached)

        params = {"apikey": self.api_key, "t": title, "type": "movie"}
        if year:
            params["y"] = year
        try:
            data = get_json(self._session(), OMDB_API_BASE, params=params,
                            rate_limit=self.rate_limit)
        except (requests.RequestException, ValueError) as e:
            logger.warning("OMDb lookup failed for %r (%s): %s", title, year, e)
            return None

        if self.cache is not None:
            self.cache.put(key, data)
        result = transform_response(data)
        if result is None:
            logger.debug("OMDb: %r (%s) not found", title, year)
        else:
            logger.info("OMDb found %r → %s", title, result["external_id"])
        return result

    __call__ = lookup
