"""
Configuration for Material Match.

Holds the material category rule table and matcher settings.
Config is declarative JSON - edit the file, not the code.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path(__file__).parent / "material_categories.json"


class FallbackPolicy(Enum):
    """How word-overlap fallback scores are bounded."""
    CAPPED = "capped"      # min(score, 1.0)
    UNCAPPED = "uncapped"  # legacy accumulation, may exceed 1.0


class OrphanPolicy(Enum):
    """What happens to derived rows when their parent row is deleted."""
    CASCADE = "cascade"  # delete derived rows together with the parent
    FLAG = "flag"        # keep derived rows, mark them orphaned


@dataclass
class MaterialCategory:
    """
    One entry of the category rule table.

    triggers:        label substrings that activate this category
    keywords:        entry-name substrings scoring >= keyword_score
    preferred:       entry-name substrings scoring >= preferred_score
    candidate_terms: entry-name substrings kept in the override list
    """
    tag: str
    triggers: list[str]
    keywords: list[str] = field(default_factory=list)
    preferred: list[str] = field(default_factory=list)
    candidate_terms: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.triggers = [t.lower() for t in self.triggers]
        self.keywords = [k.lower() for k in self.keywords]
        self.preferred = [p.lower() for p in self.preferred]
        self.candidate_terms = [c.lower() for c in self.candidate_terms] or list(self.keywords)

    def is_triggered_by(self, normalized_label: str) -> bool:
        return any(trigger in normalized_label for trigger in self.triggers)


@dataclass
class MatchSettings:
    """Settings for scoring, confidence and row derivation."""
    confidence_threshold: float = 0.8
    preferred_score: float = 0.9
    keyword_score: float = 0.8
    fallback_word_score: float = 0.3
    fallback_policy: FallbackPolicy = FallbackPolicy.CAPPED
    orphan_policy: OrphanPolicy = OrphanPolicy.CASCADE

    reinforcement_label: str = "Armierungsstahl"
    reinforcement_element: str = "Bewehrung"
    reinforcement_keyword: str = "armierung"

    unmatched_fetch_error_label: str = "Unmatched - fetch error"


@dataclass
class Config:
    """Full configuration for material matching."""
    categories: list[MaterialCategory] = field(default_factory=list)
    settings: MatchSettings = field(default_factory=MatchSettings)

    def get_category(self, tag: str) -> Optional[MaterialCategory]:
        for category in self.categories:
            if category.tag == tag:
                return category
        return None

    def triggered_categories(self, normalized_label: str) -> list[MaterialCategory]:
        """All categories activated by the label, in table order."""
        return [c for c in self.categories if c.is_triggered_by(normalized_label)]


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to material_categories.json (default: the module's copy)

    Returns:
        Config object with categories and settings
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return parse_config(data)


def parse_config(data: dict) -> Config:
    """Build a Config from already-decoded JSON data."""
    categories = []
    for entry in data.get("categories", []):
        if not entry.get("tag") or not entry.get("triggers"):
            raise ValueError(f"Category needs 'tag' and 'triggers': {entry}")
        categories.append(MaterialCategory(
            tag=entry["tag"],
            triggers=entry["triggers"],
            keywords=entry.get("keywords", []),
            preferred=entry.get("preferred", []),
            candidate_terms=entry.get("candidate_terms", []),
        ))

    settings_data = data.get("settings", {})
    defaults = MatchSettings()
    settings = MatchSettings(
        confidence_threshold=float(settings_data.get("confidence_threshold", defaults.confidence_threshold)),
        preferred_score=float(settings_data.get("preferred_score", defaults.preferred_score)),
        keyword_score=float(settings_data.get("keyword_score", defaults.keyword_score)),
        fallback_word_score=float(settings_data.get("fallback_word_score", defaults.fallback_word_score)),
        fallback_policy=FallbackPolicy(settings_data.get("fallback_policy", defaults.fallback_policy.value)),
        orphan_policy=OrphanPolicy(settings_data.get("orphan_policy", defaults.orphan_policy.value)),
        reinforcement_label=settings_data.get("reinforcement_label", defaults.reinforcement_label),
        reinforcement_element=settings_data.get("reinforcement_element", defaults.reinforcement_element),
        reinforcement_keyword=settings_data.get("reinforcement_keyword", defaults.reinforcement_keyword).lower(),
        unmatched_fetch_error_label=settings_data.get(
            "unmatched_fetch_error_label", defaults.unmatched_fetch_error_label
        ),
    )

    return Config(categories=categories, settings=settings)
