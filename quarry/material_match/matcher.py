"""
Material Matcher - maps a free-text material label to a catalog entry.

Scoring, per catalog entry, highest wins:

| Rule                                        | Score             |
|---------------------------------------------|-------------------|
| normalized label == normalized entry name   | 1.0               |
| triggered category, name has preferred term | >= 0.9            |
| triggered category, name has keyword        | >= 0.8            |
| fallback (nothing above scored): per word   | +0.3 per word hit |

Category scores combine by maximum, never by sum. Ties go to the entry
seen first in catalog order. A score >= 0.8 is a "confident" match.
"""

import logging
from typing import Optional

from .config import Config, FallbackPolicy, MaterialCategory
from .index import CatalogSnapshot, build_snapshot, normalize_name
from .models import MatchResult, ReferenceEntry

logger = logging.getLogger(__name__)


def match_label(
    label: str,
    catalog: CatalogSnapshot | list[ReferenceEntry],
    config: Config,
) -> MatchResult:
    """
    Find the best catalog entry for a material label.

    Args:
        label: Free-text material description from the bill of quantities
        catalog: Snapshot (or plain entry list) to search
        config: Category rules and scoring settings

    Returns:
        MatchResult with best entry (None if nothing scored), score and
        the category-filtered candidate list. No-match is a normal outcome.
    """
    snapshot = catalog if isinstance(catalog, CatalogSnapshot) else build_snapshot(catalog)
    if snapshot.entry_count == 0:
        return MatchResult(best=None, score=0.0, candidates=[])

    normalized = normalize_name(label)
    categories = config.triggered_categories(normalized)

    scores = [
        _score_entry(normalized, name, categories, config)
        for name in snapshot.normalized_names
    ]

    if not any(score > 0 for score in scores):
        scores = [
            _fallback_score(normalized, name, config)
            for name in snapshot.normalized_names
        ]

    best, best_score = _pick_best(snapshot.entries, scores)
    candidates = filter_candidates(normalized, snapshot, config)

    return MatchResult(best=best, score=best_score, candidates=candidates)


def _score_entry(
    normalized_label: str,
    entry_name: str,
    categories: list[MaterialCategory],
    config: Config,
) -> float:
    """Exact-name and category-rule score for one entry."""
    if entry_name == normalized_label:
        return 1.0

    settings = config.settings
    score = 0.0
    for category in categories:
        if any(term in entry_name for term in category.preferred):
            score = max(score, settings.preferred_score)
        if any(keyword in entry_name for keyword in category.keywords):
            score = max(score, settings.keyword_score)
    return score


def _fallback_score(normalized_label: str, entry_name: str, config: Config) -> float:
    """
    Word-overlap score: fallback_word_score per label word found in the name.

    Uncapped accumulation can exceed 1.0 for long labels.
    """
    settings = config.settings
    hits = sum(1 for word in normalized_label.split() if word in entry_name)
    score = round(hits * settings.fallback_word_score, 6)
    if settings.fallback_policy == FallbackPolicy.CAPPED:
        score = min(score, 1.0)
    return score


def _pick_best(
    entries: tuple[ReferenceEntry, ...],
    scores: list[float],
) -> tuple[Optional[ReferenceEntry], float]:
    """Highest score wins; strict comparison keeps the first entry on ties."""
    best = None
    best_score = 0.0
    for entry, score in zip(entries, scores):
        if score > best_score:
            best = entry
            best_score = score
    return best, best_score


def filter_candidates(
    normalized_label: str,
    snapshot: CatalogSnapshot,
    config: Config,
) -> list[ReferenceEntry]:
    """
    Entries offered for manual override.

    The first triggered category (in table order) decides the filter.
    Labels that trigger no category get the whole catalog.
    """
    categories = config.triggered_categories(normalized_label)
    if not categories:
        return list(snapshot.entries)

    terms = categories[0].candidate_terms
    return [
        entry
        for entry, name in zip(snapshot.entries, snapshot.normalized_names)
        if any(term in name for term in terms)
    ]


def looks_like_reinforcement(entry_name: Optional[str], config: Config) -> bool:
    """Plausibility check that a matched entry denotes reinforcement steel."""
    if not entry_name:
        return False
    return config.settings.reinforcement_keyword in entry_name.lower()


def match_many(
    labels: list[str],
    catalog: CatalogSnapshot | list[ReferenceEntry],
    config: Config,
) -> list[MatchResult]:
    """Match several labels against one shared snapshot."""
    snapshot = catalog if isinstance(catalog, CatalogSnapshot) else build_snapshot(catalog)
    results = [match_label(label, snapshot, config) for label in labels]
    confident = sum(1 for r in results if r.is_confident(config.settings.confidence_threshold))
    logger.debug(f"Matched {len(results)} labels, {confident} confident")
    return results
