"""
Cron scheduler for pipeline stages.

Each stage fires onto its queue lane under a deterministic per-day (or
per-hour) job id, so a re-fire within the same period is skipped by the
queue instead of running twice.
"""

import argparse
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from croniter import croniter
from redis import Redis
from rq.job import Job

from config import configure_logging, settings
from services.pipeline_queue import (
    DISCOVERY_LANE,
    ENRICHMENT_LANE,
    MAINTENANCE_LANE,
    enqueue_stage,
    get_redis_connection,
)

logger = logging.getLogger(__name__)

REGISTRY_KEY = "pipeline:scheduler:stages"


@dataclass(frozen=True)
class ScheduledStage:
    name: str
    cron: str
    lane: str
    task: str
    kwargs: Dict[str, Any] = field(default_factory=dict)
    hourly: bool = False
    active_hours: Optional[Tuple[int, int]] = None

    def job_id(self, fire_time: datetime) -> str:
        return f"{self.name}-{fire_time.strftime('%Y-%m-%d-%H' if self.hourly else '%Y-%m-%d')}"

    def is_active(self, fire_time: datetime) -> bool:
        if self.active_hours is None:
            return True
        start, end = self.active_hours
        return start <= fire_time.hour <= end

    def describe(self) -> str:
        return json.dumps({"cron": self.cron, "lane": self.lane, "task": self.task, "kwargs": self.kwargs})


def build_stages() -> List[ScheduledStage]:
    return [
        ScheduledStage(
            "backfill-organizations",
            settings.CRON_BACKFILL_ORGANIZATIONS,
            DISCOVERY_LANE,
            "services.tasks.backfill_organizations",
        ),
        ScheduledStage(
            "backfill-creators",
            settings.CRON_BACKFILL_CREATORS,
            DISCOVERY_LANE,
            "services.tasks.backfill_creators",
        ),
        ScheduledStage("match-videos", settings.CRON_MATCH_VIDEOS, ENRICHMENT_LANE, "services.tasks.match_videos"),
        ScheduledStage(
            "promote-videos",
            settings.CRON_PROMOTE_VIDEOS,
            ENRICHMENT_LANE,
            "services.tasks.promote_videos",
        ),
        ScheduledStage(
            "cleanup",
            settings.CRON_CLEANUP,
            MAINTENANCE_LANE,
            "services.tasks.cleanup",
            kwargs={"scope": "all"},
        ),
        ScheduledStage("full-resync", settings.CRON_FULL_RESYNC, DISCOVERY_LANE, "services.tasks.full_resync"),
        ScheduledStage(
            "stats-refresh",
            settings.CRON_STATS_REFRESH,
            MAINTENANCE_LANE,
            "services.tasks.refresh_stats",
            hourly=True,
            active_hours=(settings.STATS_REFRESH_START_HOUR, settings.STATS_REFRESH_END_HOUR),
        ),
    ]


def stage_by_name(name: str, stages: Optional[List[ScheduledStage]] = None) -> ScheduledStage:
    for stage in stages or build_stages():
        if stage.name == name:
            return stage
    raise KeyError(f"Unknown stage: {name}")


class Scheduler:
    """Tick loop that fires due stages onto their lanes."""

    def __init__(
        self,
        stages: List[ScheduledStage],
        connection: Redis,
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.stages = stages
        self.connection = connection
        self._zone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self._zone))
        self._next_fire: Dict[str, datetime] = {}

    def register(self) -> None:
        """Replace the registration hash left by a previous deployment."""
        self.connection.delete(REGISTRY_KEY)
        if self.stages:
            self.connection.hset(
                REGISTRY_KEY,
                mapping={stage.name: stage.describe() for stage in self.stages},
            )
        logger.info("Registered %s scheduled stages", len(self.stages))

    def prime(self, now: Optional[datetime] = None) -> None:
        now = now or self._clock()
        for stage in self.stages:
            self._next_fire[stage.name] = croniter(stage.cron, now).get_next(datetime)

    def fire(self, stage: ScheduledStage, fire_time: datetime) -> Optional[Job]:
        if not stage.is_active(fire_time):
            logger.debug("Stage %s outside its active hours at %s", stage.name, fire_time)
            return None
        return enqueue_stage(
            stage.lane,
            stage.task,
            stage.job_id(fire_time),
            kwargs=dict(stage.kwargs),
            connection=self.connection,
        )

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every stage whose next cron time has passed. Returns the fired job ids."""
        now = now or self._clock()
        if not self._next_fire:
            self.prime(now)

        fired: List[str] = []
        for stage in self.stages:
            due = self._next_fire[stage.name]
            if due > now:
                continue
            # Missed slots collapse into one fire; the next slot is computed from now.
            job = self.fire(stage, due)
            if job is not None:
                fired.append(job.id)
            self._next_fire[stage.name] = croniter(stage.cron, now).get_next(datetime)
        return fired

    def run_forever(self) -> None:
        self.register()
        self.prime()
        logger.info("Scheduler started (tick every %ss)", settings.SCHEDULER_TICK_SECONDS)
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            time.sleep(max(int(settings.SCHEDULER_TICK_SECONDS), 1))


def run_once(
    stage_name: str,
    connection: Optional[Redis] = None,
    now: Optional[datetime] = None,
) -> Optional[Job]:
    """Enqueue one stage immediately under a time-suffixed manual id."""
    stage = stage_by_name(stage_name)
    now = now or datetime.now(ZoneInfo(settings.SCHEDULER_TIMEZONE))
    kwargs = dict(stage.kwargs)
    kwargs["triggered_by"] = "manual"
    return enqueue_stage(
        stage.lane,
        stage.task,
        f"{stage.name}-manual-{now.strftime('%Y%m%d%H%M%S')}",
        kwargs=kwargs,
        connection=connection,
    )


def main():
    parser = argparse.ArgumentParser(description="Schedule pipeline stages.")
    parser.add_argument("--run-once", metavar="STAGE", choices=[stage.name for stage in build_stages()])
    args = parser.parse_args()

    configure_logging()
    if args.run_once:
        job = run_once(args.run_once)
        logger.info("Manual run of %s: %s", args.run_once, job.id if job else "already queued")
        return

    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
        return

    scheduler = Scheduler(build_stages(), get_redis_connection(), timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.run_forever()


if __name__ == "__main__":
    main()
