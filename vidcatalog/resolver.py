"""Attach incoming copies to work groups.

Resolution order:
1. Exact external catalog id → existing group (confidence 1.0)
2. Trigram similarity on the normalized title within ±year_tolerance
   → best-scoring group (confidence = similarity); a group already holding
   a different external id is never a match
3. Nothing matched → create a group (insert-or-fetch on external id)
"""

import logging
import sqlite3
from dataclasses import dataclass

from vidcatalog import db
from vidcatalog.config import MatchConfig
from vidcatalog.normalize import normalize_title
from vidcatalog.similarity import TrigramSearch

logger = logging.getLogger(__name__)

MATCH_EXTERNAL_ID = "external_id"
MATCH_TITLE_FUZZY = "title_fuzzy"
MATCH_NEW_GROUP = "new_group"


@dataclass(frozen=True)
class Resolution:
    group: sqlite3.Row
    match_type: str
    confidence: float

    @property
    def group_id(self):
        return self.group["id"]


def _coerce_year(value):
    if value is None or value == "":
        return None
    return int(value)


def _coerce_external_id(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def years_compatible(a, b, tolerance):
    """True when either year is unknown or they differ by at most ``tolerance``."""
    if a is None or b is None:
        return True
    return abs(int(a) - int(b)) <= tolerance


class GroupResolver:
    """Find or create the work group for a candidate copy.

    ``search`` is the similarity-search collaborator; it defaults to an
    in-database trigram search over ``conn``.
    """

    def __init__(self, conn, config=None, search=None):
        self.conn = conn
        self.config = config or MatchConfig()
        self.search = search or TrigramSearch(conn)

    def resolve(self, candidate):
        """Resolve ``candidate`` (a mapping with ``title`` and optional
        ``external_id``, ``release_year``, ``source_id``) to a Resolution."""
        title = candidate.get("title") or ""
        external_id = _coerce_external_id(candidate.get("external_id"))
        year = _coerce_year(candidate.get("release_year"))

        if external_id is not None:
            group = db.group_by_external_id(self.conn, external_id)
            if group is not None:
                logger.debug("External id match: %s → group %s (%s)",
                             external_id, group["id"], group["canonical_title"])
                return Resolution(group, MATCH_EXTERNAL_ID, 1.0)

        normalized = normalize_title(title)
        match = (self._best_fuzzy_match(normalized, year, external_id)
                 if normalized else None)
        if match is not None:
            group = db.get_group(self.conn, match["id"])
            if external_id is not None and group["external_id"] is None:
                group = self._attach_external_id(group, external_id)
            logger.debug("Fuzzy title match: %r → group %s (%s), similarity %.3f",
                         normalized, group["id"], group["canonical_title"],
                         match["similarity"])
            return Resolution(group, MATCH_TITLE_FUZZY, float(match["similarity"]))

        with db.transaction(self.conn):
            group, created = db.insert_or_fetch_group(
                self.conn,
                canonical_title=title,
                normalized_title=normalized,
                external_id=external_id,
                release_year=year,
            )
        if not created:
            # Another ingestion created the group between our lookup and insert
            logger.debug("Group for external id %s created concurrently: %s",
                         external_id, group["id"])
            return Resolution(group, MATCH_EXTERNAL_ID, 1.0)

        logger.info("Created work group %s: %r (external id %s, year %s)",
                    group["id"], title, external_id, year)
        return Resolution(group, MATCH_NEW_GROUP, 1.0)

    def _best_fuzzy_match(self, normalized, year, external_id=None):
        tolerance = self.config.year_tolerance
        threshold = self.config.fuzzy_match_threshold
        best = None
        for match in self.search(normalized, year, tolerance, threshold):
            # The collaborator is a black box; remakes outside the window never match
            if not years_compatible(year, match.get("release_year"), tolerance):
                continue
            if match["similarity"] < threshold:
                continue
            if external_id is not None and self._other_work(match, external_id):
                continue
            if best is None or match["similarity"] > best["similarity"]:
                best = match
        return best

    def _other_work(self, match, external_id):
        group = db.get_group(self.conn, match["id"])
        held = group["external_id"] if group is not None else None
        # Two different catalog ids are two different works
        return held is not None and held != external_id

    def _attach_external_id(self, group, external_id):
        try:
            with db.transaction(self.conn):
                db.set_group_external_id(self.conn, group["id"], external_id)
        except sqlite3.IntegrityError:
            logger.warning("External id %s already belongs to another group; "
                           "group %s left without one", external_id, group["id"])
            return group
        return db.get_group(self.conn, group["id"])
