"""Disk cache for catalog lookup responses.

Each lookup (kind, title, year) maps to one JSON file, fanned out into
subdirectories by the first two characters of its hashed key.  Misses are
stored like hits, so a title OMDb does not know costs one request, not
one per ingest.
"""

import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def lookup_key(kind, title, year=None):
    """Hashed key for a lookup; title case and spacing do not matter."""
    title = " ".join(str(title or "").lower().split())
    year = "" if year is None else str(year).strip()
    raw = f"{kind}\x1f{title}\x1f{year}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class LookupCache:
    """Stored lookup responses under ``cache_dir``.

    ``max_age_seconds`` of 0 keeps entries forever.
    """

    def __init__(self, cache_dir, max_age_seconds=0):
        self.cache_dir = Path(cache_dir)
        self.max_age_seconds = max_age_seconds

    def path_for(self, key):
        return self.cache_dir / key[:2] / f"{key}.json"

    def get(self, key):
        """The stored response for ``key``, or None when absent, expired or unreadable."""
        path = self.path_for(key)
        try:
            if self.max_age_seconds > 0:
                age = time.time() - path.stat().st_mtime
                if age > self.max_age_seconds:
                    logger.debug("Cache entry %s expired (%.0fs old)", key, age)
                    return None
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, e)
            return None

    def put(self, key, response):
        """Store ``response``; readers never see a half-written file."""
        payload = json.dumps(response)
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{key}.{os.getpid()}-{threading.get_ident()}.tmp")
        try:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()
