"""
Heuristic mapping of raw CSV headers onto canonical CRM fields.

Every (header, field) pair is scored from three signals on the normalized
header text: regex patterns, synonym similarity and keyword similarity. The
strongest signal is scaled by the field weight and a small bonus is added when
other headers in the same file look like related fields (a "First Name" column
makes "Last Name" more believable). Assignment is greedy over the sorted
scores, so a field is claimed by at most one header.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from crm_app.core.config import settings
from crm_app.domain.imports.field_catalog import (
    CONTACT_CATALOG,
    CanonicalField,
    FieldCatalog,
)

logger = logging.getLogger(__name__)

PATTERN_MATCH_SCORE = 0.9
SYNONYM_FACTOR = 0.8
KEYWORD_FACTOR = 0.6
KEYWORD_MIN_SIMILARITY = 0.7
CONTAINMENT_SIMILARITY = 0.8
EDIT_SIMILARITY_FLOOR = 0.6

CONTEXT_BONUS_PER_HEADER = 0.1
CONTEXT_BONUS_CAP = 0.3
CONTEXT_NEIGHBOUR_MIN_SCORE = 0.5

CANDIDATE_MIN_SCORE = 0.3
ASSIGNMENT_MIN_CONFIDENCE = 0.4
SUGGESTION_MIN_SCORE = 0.2
MAX_SUGGESTIONS = 5

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class HeaderMapping:
    """Result of mapping one header list."""
    mapping: Dict[str, str] = field(default_factory=dict)
    confidence: Dict[str, float] = field(default_factory=dict)
    suggestions: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "mapping": dict(self.mapping),
            "confidence": dict(self.confidence),
            "suggestions": {header: list(fields) for header, fields in self.suggestions.items()},
        }


def normalize_header(text: str) -> str:
    """Lower-case, turn non-alphanumerics into spaces and collapse whitespace."""
    lowered = str(text).lower()
    return _WHITESPACE.sub(" ", _NON_ALNUM.sub(" ", lowered)).strip()


def levenshtein_distance(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[-1]


def semantic_similarity(left: str, right: str) -> float:
    """
    Similarity of two strings after normalization.

    1.0 for equal text, 0.8 when one contains the other, otherwise the
    edit-distance ratio when it exceeds 0.6, else 0.
    """
    a = normalize_header(left)
    b = normalize_header(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return CONTAINMENT_SIMILARITY

    longest = max(len(a), len(b))
    similarity = 1 - levenshtein_distance(a, b) / longest
    return similarity if similarity > EDIT_SIMILARITY_FLOOR else 0.0


def pattern_score(header: str, canonical: CanonicalField) -> float:
    """Weighted score of a single header against a single field, without context."""
    normalized = normalize_header(header)
    best = 0.0

    for pattern in canonical.compiled_patterns:
        if pattern.search(normalized):
            best = max(best, PATTERN_MATCH_SCORE)
            break

    for synonym in canonical.synonyms:
        best = max(best, semantic_similarity(normalized, synonym) * SYNONYM_FACTOR)

    words = normalized.split(" ") if normalized else []
    for keyword in canonical.keywords:
        for word in words:
            similarity = semantic_similarity(word, keyword)
            if similarity > KEYWORD_MIN_SIMILARITY:
                best = max(best, similarity * KEYWORD_FACTOR)

    return best * canonical.weight


class HeaderFieldMapper:
    """Maps header lists for one catalog. Stateless between calls."""

    def __init__(self, catalog: FieldCatalog = CONTACT_CATALOG, *, confidence_threshold: Optional[float] = None):
        self.catalog = catalog
        self.confidence_threshold = (
            confidence_threshold if confidence_threshold is not None else settings.auto_map_confidence_threshold
        )

    def _score_matrix(self, headers: Sequence[str]) -> Dict[str, Dict[str, float]]:
        matrix: Dict[str, Dict[str, float]] = {}
        for header in headers:
            if header in matrix:
                continue
            matrix[header] = {
                canonical.name: pattern_score(header, canonical) for canonical in self.catalog.fields
            }
        return matrix

    def _context_bonus(
        self,
        header: str,
        field_name: str,
        headers: Sequence[str],
        matrix: Dict[str, Dict[str, float]],
    ) -> float:
        related = self.catalog.related_fields.get(field_name)
        if not related:
            return 0.0

        bonus = 0.0
        for other in headers:
            if other == header:
                continue
            scores = matrix[other]
            if any(scores.get(related_name, 0.0) > CONTEXT_NEIGHBOUR_MIN_SCORE for related_name in related):
                bonus += CONTEXT_BONUS_PER_HEADER
        return min(bonus, CONTEXT_BONUS_CAP)

    def map_headers(self, headers: Sequence[str]) -> HeaderMapping:
        """
        Infer a header -> field mapping for ``headers``.

        Never raises for odd input; headers that match nothing are simply left
        out of the mapping with confidence 0.
        """
        result = HeaderMapping()
        header_list = [str(header) for header in headers or [] if header is not None]
        if not header_list:
            return result

        matrix = self._score_matrix(header_list)

        totals: Dict[str, Dict[str, float]] = {}
        candidates = []
        for header in header_list:
            if header in totals:
                continue
            totals[header] = {}
            for canonical in self.catalog.fields:
                score = matrix[header][canonical.name]
                score += self._context_bonus(header, canonical.name, header_list, matrix)
                totals[header][canonical.name] = score
                if score > CANDIDATE_MIN_SCORE:
                    candidates.append((header, canonical.name, score))

        # Stable: equal scores keep header order, then catalog order.
        candidates.sort(key=lambda item: item[2], reverse=True)

        claimed_fields = set()
        for header, field_name, score in candidates:
            if header in result.mapping or field_name in claimed_fields:
                continue
            confidence = min(score, 1.0)
            if confidence < ASSIGNMENT_MIN_CONFIDENCE:
                continue
            result.mapping[header] = field_name
            claimed_fields.add(field_name)

        for header in header_list:
            mapped = result.mapping.get(header)
            confidence = min(totals[header][mapped], 1.0) if mapped else 0.0
            result.confidence[header] = round(confidence, 4)

            if mapped is None or confidence < self.confidence_threshold:
                alternatives = [
                    (name, score)
                    for name, score in totals[header].items()
                    if score > SUGGESTION_MIN_SCORE and name != mapped
                ]
                alternatives.sort(key=lambda item: item[1], reverse=True)
                if alternatives:
                    result.suggestions[header] = [name for name, _ in alternatives[:MAX_SUGGESTIONS]]

        logger.debug(
            "Mapped %d/%d headers for %s",
            len(result.mapping),
            len(header_list),
            self.catalog.entity_type.value,
        )
        return result


def map_headers(headers: Sequence[str], catalog: FieldCatalog = CONTACT_CATALOG) -> HeaderMapping:
    """Convenience wrapper around :class:`HeaderFieldMapper`."""
    return HeaderFieldMapper(catalog).map_headers(headers)
