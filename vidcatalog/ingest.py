"""Ingestion pipeline for newly seen uploads.

For each upload:
1. Clean the raw title using the channel's stored pattern
2. Fill a missing release year from "(YYYY)" in the title, and a missing
   external id from the catalog lookup when one is configured
3. Resolve the work group (external id → fuzzy title → new group)
4. Score the copy, insert it, and settle primary/backup status
"""

import logging
import sqlite3
from dataclasses import dataclass

from vidcatalog import db
from vidcatalog.normalize import clean_title, extract_year, strip_year
from vidcatalog.patterns import StoredPatternSupplier
from vidcatalog.promotion import apply_primary, copy_state
from vidcatalog.resolver import GroupResolver
from vidcatalog.scoring import QualityScorer

logger = logging.getLogger(__name__)

MATCH_EXISTING = "existing"


@dataclass(frozen=True)
class IngestResult:
    copy_id: int
    group_id: int
    title: str
    match_type: str
    confidence: float
    quality_score: int
    state: str


class Ingestor:
    """Wire the four components together over one connection.

    Collaborators are injectable: ``reputation(source_id)``,
    ``patterns(source_id)``, ``search(title, year, tolerance, threshold)``
    and ``catalog(title, year)``.  Leaving ``catalog`` as None skips
    external id lookups.
    """

    def __init__(self, conn, config=None, reputation=None, patterns=None,
                 search=None, catalog=None, clock=None):
        self.conn = conn
        self.resolver = GroupResolver(conn, config=config, search=search)
        self.scorer = QualityScorer(reputation=reputation, clock=clock)
        self.patterns = patterns or StoredPatternSupplier(conn)
        self.catalog = catalog

    def ingest(self, video):
        """Ingest one upload (a mapping) and return an IngestResult.

        Required keys: ``source_video_id``, ``title``.  Optional:
        ``source_id``, ``external_id``, ``release_year``, ``view_count``,
        ``like_count``, ``published_at``, ``is_embeddable``, ``is_available``.
        An upload already in the catalog is reported, not re-inserted.
        """
        video_id = video["source_video_id"]
        existing = db.copy_by_video_id(self.conn, video_id)
        if existing is not None:
            logger.debug("Upload %s already catalogued as copy %s", video_id, existing["id"])
            return _existing_result(existing)

        raw_title = video.get("title") or ""
        source_id = video.get("source_id")
        title = clean_title(raw_title, self.patterns(source_id)) or raw_title.strip()

        release_year = video.get("release_year") or extract_year(title)
        external_id = video.get("external_id")
        if external_id is None and self.catalog is not None:
            info = self.catalog(strip_year(title), release_year)
            if info:
                external_id = info["external_id"]
                release_year = release_year or info.get("release_year")

        resolution = self.resolver.resolve({
            "title": title,
            "external_id": external_id,
            "release_year": release_year,
            "source_id": source_id,
        })

        score = self.scorer.score(video)
        try:
            with db.transaction(self.conn):
                copy_id = db.insert_copy(
                    self.conn,
                    source_video_id=video_id,
                    title=title,
                    group_id=resolution.group_id,
                    source_id=source_id,
                    original_title=raw_title,
                    view_count=video.get("view_count"),
                    like_count=video.get("like_count"),
                    published_at=_timestamp_text(video.get("published_at")),
                    is_embeddable=video.get("is_embeddable", False),
                    is_available=video.get("is_available", True),
                    quality_score=score,
                )
        except sqlite3.IntegrityError:
            # A concurrent ingest of the same upload inserted it first
            existing = db.copy_by_video_id(self.conn, video_id)
            if existing is None:
                raise
            logger.debug("Upload %s catalogued concurrently as copy %s",
                         video_id, existing["id"])
            return _existing_result(existing)
        state = apply_primary(self.conn, resolution.group_id, copy_id, score)

        logger.info("Ingested %r as copy %s → group %s (%s %.2f), score %s, %s",
                    title, copy_id, resolution.group_id, resolution.match_type,
                    resolution.confidence, score, state)
        return IngestResult(
            copy_id=copy_id,
            group_id=resolution.group_id,
            title=title,
            match_type=resolution.match_type,
            confidence=resolution.confidence,
            quality_score=score,
            state=state,
        )

    def ingest_many(self, videos, verbose=False):
        """Ingest uploads one by one; a failing upload does not stop the rest.

        Returns ``(results, errors)`` where errors are (source_video_id, message).
        """
        results = []
        errors = []
        for video in videos:
            try:
                results.append(self.ingest(video))
            except Exception as e:
                logger.error("Failed to ingest %s: %s", video.get("source_video_id"), e)
                errors.append((video.get("source_video_id"), str(e)))
                if verbose:
                    print(f"    ERROR on {video.get('source_video_id')}: {e}")
        return results, errors


def _existing_result(row):
    return IngestResult(
        copy_id=row["id"],
        group_id=row["group_id"],
        title=row["title"],
        match_type=MATCH_EXISTING,
        confidence=1.0,
        quality_score=row["quality_score"],
        state=copy_state(row),
    )


def _timestamp_text(value):
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
