"""RQ worker process entrypoint for one pipeline lane."""

import argparse
import asyncio
import logging

from rq import SimpleWorker
from rq.worker_pool import WorkerPool

from config import configure_logging, settings
from metrics import start_metrics_server
from services.pipeline_queue import LANES, get_redis_connection, lane_concurrency, recover_stalled_sync_jobs

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run workers for a pipeline lane.")
    parser.add_argument("lane", choices=LANES)
    args = parser.parse_args()

    configure_logging()
    try:
        recovered = asyncio.run(recover_stalled_sync_jobs())
        if recovered:
            logger.info("Recovered %s stalled sync jobs after startup", recovered)
    except Exception:
        logger.exception("Stalled sync job recovery skipped")

    redis_conn = get_redis_connection()
    workers = lane_concurrency(args.lane)
    logger.info("Starting %s worker(s) on the %s lane", workers, args.lane)
    # Jobs run inside the worker process so quota state and metrics outlive a single job.
    if workers == 1:
        start_metrics_server(settings.WORKER_METRICS_PORT)
        worker = SimpleWorker([args.lane], connection=redis_conn)
        worker.work(with_scheduler=True)
    else:
        if settings.WORKER_METRICS_PORT:
            logger.warning("Worker metrics are only served by single-worker lanes; %s runs %s", args.lane, workers)
        pool = WorkerPool([args.lane], connection=redis_conn, num_workers=workers, worker_class=SimpleWorker)
        pool.start()


if __name__ == "__main__":
    main()
