"""Loadable pattern tables for classification and matching."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from re import Pattern
from typing import Any, Dict, Optional, Tuple

from config import settings

DEFAULT_RULES_PATH = Path(__file__).with_name("rules.json")


@dataclass(frozen=True)
class CategoryRule:
    category: str
    patterns: Tuple[Pattern[str], ...]


@dataclass(frozen=True)
class WeightedPattern:
    pattern: Pattern[str]
    points: int


@dataclass(frozen=True)
class MatchingRules:
    battle_keywords: Tuple[str, ...] = ()
    event_participants: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    event_score: int = 85
    exclusions: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleTable:
    categories: Tuple[CategoryRule, ...]
    slug_mapping: Dict[str, str]
    base_score: int
    relevant: Tuple[WeightedPattern, ...]
    irrelevant: Tuple[Pattern[str], ...]
    irrelevant_penalty: int
    view_bonus_cap: float
    view_bonus_floor: int
    view_bonus_multiplier: float
    event_year: Pattern[str]
    title_year: Pattern[str]
    max_tags: int
    tag_min_length: int
    tag_max_length: int
    band_terms: Tuple[str, ...]
    matching: MatchingRules


def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern, flags=re.IGNORECASE)


def parse_rule_table(raw: Dict[str, Any]) -> RuleTable:
    """Build a RuleTable from its JSON document form."""
    quality = raw.get("quality", {})
    events = raw.get("events", {})
    tags = raw.get("tags", {})
    matching = raw.get("matching", {})

    return RuleTable(
        categories=tuple(
            CategoryRule(
                category=str(rule["category"]),
                patterns=tuple(_compile(p) for p in rule.get("patterns", [])),
            )
            for rule in raw.get("categories", [])
        ),
        slug_mapping=dict(raw.get("slug_mapping", {})),
        base_score=int(quality.get("base_score", 50)),
        relevant=tuple(
            WeightedPattern(pattern=_compile(item["pattern"]), points=int(item["points"]))
            for item in quality.get("relevant", [])
        ),
        irrelevant=tuple(_compile(p) for p in quality.get("irrelevant", [])),
        irrelevant_penalty=int(quality.get("irrelevant_penalty", 30)),
        view_bonus_cap=float(quality.get("view_bonus_cap", 10)),
        view_bonus_floor=int(quality.get("view_bonus_floor", 1000)),
        view_bonus_multiplier=float(quality.get("view_bonus_multiplier", 5)),
        # Event names are capitalised in titles, so this one stays case-sensitive.
        event_year=re.compile(events.get("event_year", r"(\w+(?:\s+\w+)*)\s+(20\d{2})")),
        title_year=re.compile(events.get("title_year", r"\b(20\d{2})\b")),
        max_tags=int(tags.get("max_tags", 20)),
        tag_min_length=int(tags.get("min_length", 3)),
        tag_max_length=int(tags.get("max_length", 49)),
        band_terms=tuple(str(term).lower() for term in tags.get("band_terms", [])),
        matching=MatchingRules(
            battle_keywords=tuple(str(k).lower() for k in matching.get("battle_keywords", [])),
            event_participants={
                str(event).lower(): tuple(participants)
                for event, participants in matching.get("event_participants", {}).items()
            },
            event_score=int(matching.get("event_score", 85)),
            exclusions={
                str(reason): tuple(str(p).lower() for p in patterns)
                for reason, patterns in matching.get("exclusions", {}).items()
            },
        ),
    )


def load_rule_table(path: Optional[str] = None) -> RuleTable:
    """Read a rule table from disk; the bundled table is used when no path is given."""
    source = Path(path) if path else DEFAULT_RULES_PATH
    with source.open("r", encoding="utf-8") as handle:
        return parse_rule_table(json.load(handle))


@lru_cache(maxsize=1)
def get_rule_table() -> RuleTable:
    """Process-wide rule table, honouring CLASSIFICATION_RULES_PATH."""
    return load_rule_table(settings.CLASSIFICATION_RULES_PATH or None)
