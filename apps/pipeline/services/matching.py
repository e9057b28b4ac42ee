"""Resolve which organization owns creator-sourced staged videos."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.future import select

from classification.rules import MatchingRules, get_rule_table
from config import settings
from database import async_session_maker
from models.organization import Organization
from models.staged_video import StagedVideo
from models.sync_job import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_TYPE_MATCH_VIDEOS
from services.catalog_store import finish_sync_job, start_sync_job

logger = logging.getLogger(__name__)

ALL_STAR = "ALL_STAR"
LEADING_WINDOW = 200
ACRONYM_STOPWORDS = {"of", "the", "at", "and"}


@dataclass
class OrganizationProfile:
    id: str
    name: str
    school_name: str
    is_all_star: bool
    aliases: List[str]


@dataclass
class MatchCandidate:
    organization_id: str
    score: int
    alias: str


def _school_nickname(name: str, school: str) -> Optional[str]:
    name_words = name.lower().split()
    school_words = school.lower().split()
    if len(name_words) <= 2:
        return None
    start = 0
    for school_word, name_word in zip(school_words, name_words):
        if school_word != name_word:
            break
        start += 1
    if 0 < start < len(name_words):
        nickname = " ".join(name_words[start:])
        if len(nickname) > 3:
            return nickname
    return None


def _acronym(school: str) -> Optional[str]:
    words = [
        word
        for word in school.replace("&", "and").split()
        if word.lower() not in ACRONYM_STOPWORDS
    ]
    acronym = "".join(word[0] for word in words).lower()
    if 2 <= len(acronym) <= 5:
        return acronym
    return None


def build_aliases(
    name: str,
    school_name: Optional[str],
    configured: Optional[List[str]] = None,
    is_all_star: bool = False,
) -> List[str]:
    """Lower-case names a video title might use for an organization."""
    aliases: List[str] = []

    def add(alias: Optional[str]) -> None:
        if alias:
            alias = alias.strip().lower()
            if alias and alias not in aliases:
                aliases.append(alias)

    add(name)
    for alias in configured or []:
        add(alias)
    if is_all_star:
        return [alias for alias in aliases if len(alias) >= 3]

    school = (school_name or "").strip()
    if school:
        add(school)
        nickname = _school_nickname(name, school)
        add(nickname)
        simple = re.sub(r"\s+(university|college)$", "", school, flags=re.IGNORECASE).strip()
        if simple.lower() != school.lower():
            add(simple)
        add(_acronym(school))

    return [alias for alias in aliases if len(alias) >= 3]


def build_profile(organization: Organization) -> OrganizationProfile:
    name = organization.name or ""
    is_all_star = (
        organization.organization_type == ALL_STAR
        or "all-star" in name.lower()
        or "mass band" in name.lower()
    )
    return OrganizationProfile(
        id=organization.id,
        name=name,
        school_name=organization.school_name or "",
        is_all_star=is_all_star,
        aliases=build_aliases(name, organization.school_name, organization.aliases, is_all_star),
    )


def exclusion_reason(text: str, rules: MatchingRules) -> Optional[str]:
    lowered = text.lower()
    for reason, patterns in rules.exclusions.items():
        if any(pattern in lowered for pattern in patterns):
            return reason
    return None


def is_battle(text: str, rules: MatchingRules) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in rules.battle_keywords)


def event_candidates(
    text: str,
    profiles: List[OrganizationProfile],
    rules: MatchingRules,
) -> List[MatchCandidate]:
    """Organizations known to take part in an event named in the text."""
    lowered = text.lower()
    for event, participants in rules.event_participants.items():
        if event not in lowered:
            continue
        candidates: List[MatchCandidate] = []
        for participant in participants:
            needle = participant.lower()
            for profile in profiles:
                if needle in profile.name.lower() or needle in profile.school_name.lower():
                    if all(c.organization_id != profile.id for c in candidates):
                        candidates.append(MatchCandidate(profile.id, rules.event_score, event))
                    break
        if candidates:
            return candidates
    return []


def _alias_score(alias: str, profile: OrganizationProfile) -> int:
    if profile.is_all_star:
        if alias == profile.name.lower():
            return 110
        return 90 if len(alias) >= 4 else 70
    if alias == profile.name.lower():
        return 100
    if alias == profile.school_name.lower():
        return 80
    if len(alias) >= 8:
        return 60
    if len(alias) >= 5:
        return 50
    return 30


def alias_candidates(text: str, profiles: List[OrganizationProfile]) -> List[MatchCandidate]:
    """Score every organization by its best alias hit, highest first."""
    lowered = text.lower()
    leading = lowered[:LEADING_WINDOW]
    candidates: List[MatchCandidate] = []

    for profile in profiles:
        best: Optional[MatchCandidate] = None
        for alias in profile.aliases:
            if len(alias) <= 4:
                found = re.search(rf"\b{re.escape(alias)}\b", lowered) is not None
            else:
                found = alias in lowered
            if not found:
                continue
            score = _alias_score(alias, profile)
            if alias in leading:
                score += 10
            if best is None or score > best.score:
                best = MatchCandidate(profile.id, score, alias)
        if best is not None:
            candidates.append(best)

    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    return candidates


def match_text(
    text: str,
    profiles: List[OrganizationProfile],
    rules: MatchingRules,
    min_confidence: int,
) -> Optional[Dict[str, Any]]:
    """Pick an owner (and, for battles, an opponent) for one video's text."""
    if exclusion_reason(text, rules):
        return None
    candidates = event_candidates(text, profiles, rules) or alias_candidates(text, profiles)
    if not candidates or candidates[0].score < min_confidence:
        return None

    top = candidates[0]
    opponent_id = None
    if is_battle(text, rules):
        for candidate in candidates[1:]:
            if candidate.organization_id != top.organization_id:
                if candidate.score >= min_confidence:
                    opponent_id = candidate.organization_id
                break
    return {
        "organization_id": top.organization_id,
        "opponent_organization_id": opponent_id,
        "match_confidence": top.score,
    }


async def run_matching(
    triggered_by: str = "scheduler",
    limit: Optional[int] = None,
    min_confidence: Optional[int] = None,
) -> Dict[str, Any]:
    """Match unlinked creator videos to organizations and record the run."""
    threshold = settings.MATCH_MIN_CONFIDENCE if min_confidence is None else int(min_confidence)
    rules = get_rule_table().matching
    stats = {"processed": 0, "matched": 0, "battles": 0, "excluded": 0, "unmatched": 0}
    errors: List[str] = []

    async with async_session_maker() as db:
        job_id = await start_sync_job(db, JOB_TYPE_MATCH_VIDEOS, triggered_by)

    try:
        async with async_session_maker() as db:
            org_rows = await db.execute(select(Organization))
            profiles = [build_profile(org) for org in org_rows.scalars().all()]

            query = (
                select(StagedVideo)
                .where(StagedVideo.organization_id.is_(None), StagedVideo.creator_id.isnot(None))
                .order_by(StagedVideo.created_at.desc())
            )
            if limit:
                query = query.limit(int(limit))
            videos = [
                (
                    video.id,
                    video.external_video_id,
                    " ".join([video.title or "", video.description or "", video.channel_title or ""]),
                )
                for video in (await db.execute(query)).scalars().all()
            ]
            logger.info("Matching %s staged videos against %s organizations", len(videos), len(profiles))

            for video_id, external_id, text in videos:
                stats["processed"] += 1
                if exclusion_reason(text, rules):
                    stats["excluded"] += 1
                    continue
                match = match_text(text, profiles, rules, threshold)
                if match is None:
                    stats["unmatched"] += 1
                    continue
                try:
                    await db.execute(
                        update(StagedVideo).where(StagedVideo.id == video_id).values(**match)
                    )
                    await db.commit()
                except Exception as exc:
                    await db.rollback()
                    logger.exception("Failed to record match for %s", external_id)
                    errors.append(f"Error updating {external_id}: {exc}")
                    continue
                stats["matched"] += 1
                if match["opponent_organization_id"]:
                    stats["battles"] += 1
    except Exception as exc:
        errors.append(str(exc))
        async with async_session_maker() as db:
            await finish_sync_job(db, job_id, JOB_STATUS_FAILED, videos_found=stats["processed"], errors=errors)
        raise

    async with async_session_maker() as db:
        await finish_sync_job(
            db,
            job_id,
            JOB_STATUS_COMPLETED,
            videos_found=stats["processed"],
            videos_updated=stats["matched"],
            errors=errors,
        )
    logger.info("Matching done: %s", stats)
    return {"job_id": job_id, **stats, "errors": errors}
