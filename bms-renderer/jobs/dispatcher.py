"""
FILE DESCRIPTION: One dispatch cycle over every pending job record.
KEY FUNCTIONS/CLASSES: JobDispatcher
"""

import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Dict

from jobs.models import JobRecord
from jobs.storage import JobStore
from renderer.core import DISPATCH_CONCURRENCY, setup_logger
from renderer.errors import describe_error

logger = setup_logger("bms.work")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_operation_id() -> str:
    return str(uuid.uuid4())


class JobDispatcher:
    """
    FLOW: Load pending jobs -> Submit each to a bounded pool -> Render through the client ->
    Write the result or the error onto the job record -> Summarize.
    Each job is attempted exactly once per cycle; a failing job never disturbs its siblings.
    """

    def __init__(self, store: JobStore, client, concurrency: int = DISPATCH_CONCURRENCY,
                 operation_id_factory=_new_operation_id, clock=_utc_now):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.client = client
        self.concurrency = concurrency
        self.operation_id_factory = operation_id_factory
        self.clock = clock

    def run_cycle(self) -> Dict[str, int]:
        jobs = self.store.find_pending()
        logger.info(f"Found {len(jobs)} songs to work on.")

        summary = {"total": len(jobs), "rendered": 0, "failed": 0}
        if not jobs:
            return summary

        processed = 0
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="Render") as executor:
            future_to_job = {executor.submit(self._process, job): job for job in jobs}

            for future in as_completed(future_to_job):
                job = future_to_job[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    # Even the error write failed; the record stays pending
                    outcome = "failed"
                    logger.error(f"[WORK] Cannot record outcome: {e}", extra={'context': str(job.id)})
                summary[outcome] += 1
                processed += 1

                if processed % 100 == 0:
                    logger.info(
                        f"[WORK] Progress: processed={processed}/{len(jobs)} "
                        f"rendered={summary['rendered']} failed={summary['failed']}"
                    )

        logger.info(
            f"[WORK] Done | total={summary['total']} "
            f"rendered={summary['rendered']} failed={summary['failed']}"
        )
        return summary

    def _process(self, job: JobRecord) -> str:
        context = {'context': str(job.id)}
        operation_id = self.operation_id_factory()
        logger.info(f'Start operation "{operation_id}"', extra=context)
        try:
            result = self.client.render(operation_id, job.url)
            logger.info(f'Operation "{operation_id}" finished', extra=context)
            self.store.save_result(job.id, result, self.clock())
            return "rendered"
        except Exception as e:
            logger.error(f"Cannot render! {e}", extra=context)
            self.store.save_error(job.id, describe_error(e), self.clock())
            return "failed"
