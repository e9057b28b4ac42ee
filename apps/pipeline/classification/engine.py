"""
Pure classification of video metadata.

Category detection, event extraction, quality scoring and tag generation
over title, description and provider tags. Nothing here touches the
network or the database, so the same inputs always classify the same way.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from classification.rules import RuleTable, get_rule_table

OTHER_CATEGORY = "other"


@dataclass(frozen=True)
class EventInfo:
    name: Optional[str] = None
    year: Optional[int] = None


@dataclass(frozen=True)
class Classification:
    category_slug: str
    event: EventInfo
    quality_score: int
    tags: List[str] = field(default_factory=list)


def _rules(rules: Optional[RuleTable]) -> RuleTable:
    return rules if rules is not None else get_rule_table()


def detect_category(title: str, description: str, rules: Optional[RuleTable] = None) -> str:
    """Return the category slug of the first matching rule, or "other"."""
    table = _rules(rules)
    text = f"{title or ''} {description or ''}".lower()

    for rule in table.categories:
        if any(pattern.search(text) for pattern in rule.patterns):
            return table.slug_mapping.get(rule.category, OTHER_CATEGORY)
    return OTHER_CATEGORY


def extract_event(title: str, description: str, rules: Optional[RuleTable] = None) -> EventInfo:
    """Find "<Name> <year>" in the text, falling back to a bare year in the title."""
    table = _rules(rules)
    text = f"{title or ''} {description or ''}"

    match = table.event_year.search(text)
    if match:
        name = match.group(1).strip()
        year = int(match.group(2))
        return EventInfo(name=f"{name} {year}", year=year)

    year_match = table.title_year.search(title or "")
    if year_match:
        return EventInfo(name=None, year=int(year_match.group(1)))
    return EventInfo()


def score_quality(
    title: str,
    description: str,
    provider_tags: Iterable[str],
    view_count: int,
    rules: Optional[RuleTable] = None,
) -> int:
    """Score relevance and popularity on a 0-100 scale."""
    table = _rules(rules)
    text = " ".join([title or "", description or "", " ".join(provider_tags or [])]).lower()
    score = float(table.base_score)

    for weighted in table.relevant:
        if weighted.pattern.search(text):
            score += weighted.points

    for pattern in table.irrelevant:
        if pattern.search(text):
            score -= table.irrelevant_penalty

    views = int(view_count or 0)
    if views > table.view_bonus_floor:
        score += min(
            table.view_bonus_cap,
            math.log10(views / table.view_bonus_floor) * table.view_bonus_multiplier,
        )

    return max(0, min(100, int(round(score))))


def generate_tags(
    provider_tags: Iterable[str],
    title: str,
    category_slug: str,
    event: EventInfo,
    rules: Optional[RuleTable] = None,
) -> List[str]:
    table = _rules(rules)
    tags: List[str] = []

    def add(tag: str) -> None:
        if tag and tag not in tags:
            tags.append(tag)

    for raw in provider_tags or []:
        normalized = str(raw).lower().strip()
        if table.tag_min_length <= len(normalized) <= table.tag_max_length:
            add(normalized)

    if category_slug and category_slug != OTHER_CATEGORY:
        add(category_slug)
    if event.name:
        add(event.name.lower())
    if event.year:
        add(str(event.year))

    lowered_title = (title or "").lower()
    for term in table.band_terms:
        if term in lowered_title:
            add(term)

    return tags[: table.max_tags]


def classify(
    title: str,
    description: str,
    provider_tags: Iterable[str],
    view_count: int,
    rules: Optional[RuleTable] = None,
) -> Classification:
    """Run every classifier over one video."""
    table = _rules(rules)
    provider_tags = list(provider_tags or [])
    category_slug = detect_category(title, description, table)
    event = extract_event(title, description, table)
    return Classification(
        category_slug=category_slug,
        event=event,
        quality_score=score_quality(title, description, provider_tags, view_count, table),
        tags=generate_tags(provider_tags, title, category_slug, event, table),
    )
