"""RQ worker entrypoints for pipeline stages."""

import asyncio
from typing import Any, Dict, Optional

from services.channel_sync import CREATOR, MODE_INCREMENTAL, ORGANIZATION, run_backfill, run_full_resync
from services.maintenance import SCOPE_ALL, run_cleanup
from services.matching import run_matching
from services.promotion import run_promotion
from services.stats_refresh import run_stats_refresh


def backfill_organizations(
    mode: str = MODE_INCREMENTAL,
    organization_id: Optional[str] = None,
    triggered_by: str = "scheduler",
) -> Dict[str, Any]:
    return asyncio.run(
        run_backfill(ORGANIZATION, mode=mode, organization_id=organization_id, triggered_by=triggered_by)
    )


def backfill_creators(mode: str = MODE_INCREMENTAL, triggered_by: str = "scheduler") -> Dict[str, Any]:
    return asyncio.run(run_backfill(CREATOR, mode=mode, triggered_by=triggered_by))


def full_resync(triggered_by: str = "scheduler") -> Dict[str, Any]:
    return asyncio.run(run_full_resync(triggered_by=triggered_by))


def match_videos(
    triggered_by: str = "scheduler",
    limit: Optional[int] = None,
    min_confidence: Optional[int] = None,
) -> Dict[str, Any]:
    return asyncio.run(run_matching(triggered_by=triggered_by, limit=limit, min_confidence=min_confidence))


def promote_videos(triggered_by: str = "scheduler", limit: Optional[int] = None) -> Dict[str, Any]:
    return asyncio.run(run_promotion(triggered_by=triggered_by, limit=limit))


def cleanup(scope: str = SCOPE_ALL, dry_run: bool = False, triggered_by: str = "scheduler") -> Dict[str, Any]:
    return asyncio.run(run_cleanup(scope=scope, dry_run=dry_run, triggered_by=triggered_by))


def refresh_stats(batch_size: Optional[int] = None, triggered_by: str = "scheduler") -> Dict[str, Any]:
    return asyncio.run(run_stats_refresh(batch_size=batch_size, triggered_by=triggered_by))
