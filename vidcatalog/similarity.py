"""Trigram title similarity and the default group similarity search.

Similarity follows PostgreSQL's pg_trgm: each word is padded with two
leading spaces and one trailing space, split into 3-character grams, and
two strings score |shared grams| / |all grams| in [0, 1].
"""

import re

from vidcatalog import db

_WORD_RE = re.compile(r"[^\W_]+")


def trigrams(text):
    grams = set()
    for word in _WORD_RE.findall(str(text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def similarity(a, b):
    ga = trigrams(a)
    gb = trigrams(b)
    if not ga or not gb:
        return 0.0
    return len(ga & gb) / len(ga | gb)


class TrigramSearch:
    """Find work groups whose normalized title resembles a search title.

    Callable as ``search(normalized_title, year, year_tolerance, threshold)``
    and returns dicts of group columns plus ``similarity``, best first.
    """

    def __init__(self, conn):
        self.conn = conn

    def __call__(self, normalized_title, year=None, year_tolerance=1,
                 threshold=0.7, limit=None):
        search_grams = trigrams(normalized_title)
        if not search_grams:
            return []

        results = []
        for row in db.groups_in_year_window(self.conn, year, year_tolerance):
            row_grams = trigrams(row["normalized_title"])
            if not row_grams:
                continue
            score = len(search_grams & row_grams) / len(search_grams | row_grams)
            if score >= threshold:
                match = dict(row)
                match["similarity"] = score
                results.append(match)

        results.sort(key=lambda m: (-m["similarity"], m["id"]))
        return results[:limit] if limit else results
