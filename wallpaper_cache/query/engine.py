import os
import sqlite3
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .. import config
from ..classification.rules import canonical_ratio
from ..database.ops import DBOperations
from ..indexing.mirror import IndexMirror
from ..models import ImageRecord, RatioCategory

StaleCallback = Callable[[str], None]


@dataclass
class ScoredMatch:
    path: str
    aspect_ratio: float
    score: float
    match_type: str     # exact / close / fallback


def score_ratio(aspect_ratio: float, target: RatioCategory) -> float:
    difference = abs(aspect_ratio - canonical_ratio(target))
    return max(0.0, config.SCORE_MAX - difference * config.SCORE_SLOPE)


class QueryEngine:
    """
    Resolves a ratio category to candidate image paths.

    The persisted index answers exact category lookups. When it has nothing
    for the category, or cannot be read, the in-memory mirror is searched
    by ratio distance and only the best populated tier is returned.
    """

    def __init__(self,
                 store: DBOperations,
                 mirror: IndexMirror,
                 on_stale: Optional[StaleCallback] = None):
        self.store = store
        self.mirror = mirror
        # Notified with each path found missing on disk, so the owner of the
        # mirror can drop it
        self.on_stale = on_stale

    def get_images_by_category(self, category) -> List[str]:
        target = RatioCategory(category)
        try:
            records = self.store.scan_by_category(target)
        except sqlite3.Error as e:
            logging.error(f"Index store unavailable, searching memory for {target.value}: {e}")
            return self.search_memory(target)

        if not records:
            return self.search_memory(target)

        valid = []
        for rec in records:
            if os.path.exists(rec.path):
                valid.append(rec.path)
            else:
                self._heal(rec.path)
        return valid

    def search_memory(self, target: RatioCategory) -> List[str]:
        tiers = {'exact': [], 'close': [], 'fallback': []}

        for rec in self.mirror.snapshot():
            if not os.path.exists(rec.path):
                self._heal(rec.path)
                continue
            match = self._match(rec, target)
            if match:
                tiers[match.match_type].append(match)

        for match_type in ('exact', 'close', 'fallback'):
            matches = tiers[match_type]
            if matches:
                matches.sort(key=lambda m: m.score, reverse=True)
                logging.debug(f"Memory search for {target.value}: {len(matches)} {match_type} matches")
                return [m.path for m in matches]
        return []

    def _match(self, rec: ImageRecord, target: RatioCategory) -> Optional[ScoredMatch]:
        if rec.category == target:
            return ScoredMatch(rec.path, rec.aspect_ratio, config.SCORE_MAX, 'exact')

        score = score_ratio(rec.aspect_ratio, target)
        # A perfect ratio score from another category is a disagreement between
        # the keyword and the ratio, not a match
        if score >= config.SCORE_MAX:
            return None
        if score >= config.CLOSE_MATCH_SCORE:
            return ScoredMatch(rec.path, rec.aspect_ratio, score, 'close')
        if score >= config.FALLBACK_MATCH_SCORE:
            return ScoredMatch(rec.path, rec.aspect_ratio, score, 'fallback')
        return None

    def _heal(self, path: str):
        logging.info(f"Dropping missing file from index: {path}")
        try:
            self.store.delete_image(path)
        except sqlite3.Error as e:
            logging.error(f"Failed to delete stale record for {path}: {e}")
        if self.on_stale:
            self.on_stale(path)
