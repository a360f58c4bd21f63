"""
Duplicate stage: exact signatures, then weighted near-duplicate similarity.

Phase 1 hashes {category, item name, region, price rounded to 2 decimals,
source}; a later batch member repeating an earlier signature is an exact
duplicate and gets hard-rejected.

Phase 2 compares each survivor with earlier survivors and with recent stored
observations inside a time window, using a symmetric weighted similarity.
Near-duplicates are discounted, not dropped.
"""

import hashlib
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from schemas.observation import Observation
from schemas.validation import DuplicateMatch

CATEGORY_WEIGHT = 0.2
ITEM_NAME_WEIGHT = 0.3
LOCATION_WEIGHT = 0.2
PRICE_WEIGHT = 0.2
SOURCE_WEIGHT = 0.1


def _normalize_text(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def round_price(price: float) -> float:
    return round(price * 100) / 100


def price_difference(a: float, b: float) -> float:
    """Relative difference against the larger of the two prices"""
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 0.0
    return abs(a - b) / largest


def generate_signature(observation: Observation) -> str:
    raw = "|".join([
        observation.category,
        observation.item_name,
        observation.location.region,
        f"{round_price(observation.price):.2f}",
        observation.source,
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass
class DuplicateReport:
    total_points: int
    exact_duplicates: int
    near_duplicates: int
    duplicate_rate: float
    matches: List[DuplicateMatch]


class DuplicateChecker:
    """Detect exact and near-duplicate observations"""

    def __init__(
        self,
        time_window: timedelta = timedelta(hours=24),
        price_threshold: float = 0.05,
        similarity_threshold: float = 0.85,
    ):
        self.time_window = time_window
        self.price_threshold = price_threshold
        self.similarity_threshold = similarity_threshold

    def similarity(self, a: Observation, b: Observation) -> float:
        """Weighted similarity in [0, 1]; symmetric in its arguments"""
        score = 0.0
        if a.category == b.category:
            score += CATEGORY_WEIGHT
        if _normalize_text(a.item_name) == _normalize_text(b.item_name):
            score += ITEM_NAME_WEIGHT
        if _normalize_text(a.location.region) == _normalize_text(b.location.region):
            score += LOCATION_WEIGHT
        if price_difference(a.price, b.price) <= self.price_threshold:
            score += PRICE_WEIGHT
        if _normalize_text(a.source) == _normalize_text(b.source):
            score += SOURCE_WEIGHT
        return round(score, 6)

    def within_window(self, a: Observation, b: Observation) -> bool:
        return abs(a.recorded_at - b.recorded_at) <= self.time_window

    def detect(
        self,
        batch: Sequence[Observation],
        history: Sequence[Observation] = (),
    ) -> List[DuplicateMatch]:
        """
        Return at most one match per batch position, ordered by position.

        The first occurrence of a signature (or of a near-duplicate cluster)
        is never flagged; later ones are.
        """
        matches: Dict[int, DuplicateMatch] = {}

        # Phase 1: exact signatures within the batch
        first_seen: Dict[str, int] = {}
        for index, observation in enumerate(batch):
            signature = generate_signature(observation)
            if signature in first_seen:
                matches[index] = DuplicateMatch(
                    index=index,
                    exact=True,
                    similarity=1.0,
                    signature=signature,
                    matched_index=first_seen[signature],
                )
            else:
                first_seen[signature] = index

        # Phase 2: fuzzy comparison of survivors
        survivors: List[int] = []
        for index, observation in enumerate(batch):
            if index in matches:
                continue

            best: Optional[DuplicateMatch] = None
            for earlier in survivors:
                candidate = self._compare(index, observation, batch[earlier], matched_index=earlier)
                if candidate and (best is None or candidate.similarity > best.similarity):
                    best = candidate

            for stored in history:
                if stored.category != observation.category:
                    continue
                candidate = self._compare(index, observation, stored, matched_id=stored.id)
                if candidate and (best is None or candidate.similarity > best.similarity):
                    best = candidate

            if best is not None:
                matches[index] = best
            survivors.append(index)

        return [matches[i] for i in sorted(matches)]

    def _compare(
        self,
        index: int,
        observation: Observation,
        other: Observation,
        matched_index: Optional[int] = None,
        matched_id: Optional[str] = None,
    ) -> Optional[DuplicateMatch]:
        if not self.within_window(observation, other):
            return None
        score = self.similarity(observation, other)
        if score <= self.similarity_threshold:
            return None
        return DuplicateMatch(
            index=index,
            exact=False,
            similarity=score,
            matched_index=matched_index,
            matched_id=matched_id,
        )

    def is_duplicate(self, observation: Observation, existing: Sequence[Observation]) -> bool:
        signature = generate_signature(observation)
        for other in existing:
            if generate_signature(other) == signature:
                return True
            if self.within_window(observation, other) and \
                    self.similarity(observation, other) > self.similarity_threshold:
                return True
        return False

    def deduplicate(self, batch: Sequence[Observation]) -> List[Observation]:
        """Remove exact duplicates, keeping the first occurrence"""
        seen = set()
        unique: List[Observation] = []
        for observation in batch:
            signature = generate_signature(observation)
            if signature in seen:
                continue
            seen.add(signature)
            unique.append(observation)
        return unique

    def report(
        self,
        batch: Sequence[Observation],
        history: Sequence[Observation] = (),
    ) -> DuplicateReport:
        matches = self.detect(batch, history)
        exact = sum(1 for m in matches if m.exact)
        near = len(matches) - exact
        rate = len(matches) / len(batch) if batch else 0.0
        return DuplicateReport(
            total_points=len(batch),
            exact_duplicates=exact,
            near_duplicates=near,
            duplicate_rate=rate,
            matches=matches,
        )
