"""
Health Check

Failure and anomaly listings of one application:
- failed tasks, stages and jobs with their reasons cut to a fixed length
- removed executors and block managers
- plan nodes that cannot run accelerated
- tasks reading far more shuffle data than the rest of their stage

Reasons are truncated only in the listings, the store keeps the full text.
"""

from typing import Dict, List, Optional, Tuple
import logging

import pandas as pd

from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.entities import JOB_SUCCEEDED
from spark_event_profiler.store import EntityStore
from spark_event_profiler.utils import MB, executor_sort_key, no_data, round_half_up, truncate

logger = logging.getLogger(__name__)


class HealthCheck:
    """Diagnostics over a finalized store."""

    def __init__(self, store: EntityStore, config: Optional[ProfilerConfig] = None):
        store.require_finalized()
        self.store = store
        self.config = config or ProfilerConfig()
        self.max_chars = self.config.reason_max_chars

    def _reason_column(self, name: str) -> str:
        return f"{name}_first{self.max_chars}char"

    def failed_tasks(self) -> pd.DataFrame:
        columns = ['stageId', 'stageAttemptId', 'taskId', 'attempt', self._reason_column('endReason')]
        failed = sorted(
            (task for task in self.store.tasks if not task.successful),
            key=lambda task: (task.stage_id, task.stage_attempt_id, task.task_id, task.attempt),
        )
        if not failed:
            return no_data(columns, "No Failed Tasks Found!")

        rows = [
            (task.stage_id, task.stage_attempt_id, task.task_id, task.attempt,
             truncate(task.end_reason, self.max_chars))
            for task in failed
        ]
        logger.info(f"Found {len(rows)} failed tasks in application {self.store.app_index}")
        return pd.DataFrame(rows, columns=columns)

    def failed_stages(self) -> pd.DataFrame:
        columns = ['stageId', 'attemptId', 'name', 'numTasks', self._reason_column('failureReason')]
        failed = sorted(
            (stage for stage in self.store.stages.values() if stage.failure_reason),
            key=lambda stage: (stage.stage_id, stage.attempt_id),
        )
        if not failed:
            return no_data(columns, "No Failed Stages Found!")

        rows = [
            (stage.stage_id, stage.attempt_id, stage.name, stage.num_tasks,
             truncate(stage.failure_reason, self.max_chars))
            for stage in failed
        ]
        return pd.DataFrame(rows, columns=columns)

    def failed_jobs(self) -> pd.DataFrame:
        columns = ['jobID', 'jobResult', self._reason_column('failedReason')]
        failed = sorted(
            (job for job in self.store.jobs.values()
             if job.job_result is not None and job.job_result != JOB_SUCCEEDED),
            key=lambda job: job.job_id,
        )
        if not failed:
            return no_data(columns, "No Failed Jobs Found!")

        rows = [
            (job.job_id, job.job_result, truncate(job.failed_reason, self.max_chars))
            for job in failed
        ]
        return pd.DataFrame(rows, columns=columns)

    def removed_block_managers(self) -> pd.DataFrame:
        columns = ['executorID', 'time']
        removed = sorted(self.store.block_managers_removed,
                         key=lambda record: executor_sort_key(record.executor_id))
        if not removed:
            return no_data(columns, "No Removed BlockManagers Found!")
        return pd.DataFrame([(record.executor_id, record.time) for record in removed],
                            columns=columns)

    def removed_executors(self) -> pd.DataFrame:
        columns = ['executorID', 'time', self._reason_column('reason')]
        removed = sorted(self.store.executors_removed,
                         key=lambda record: executor_sort_key(record.executor_id))
        if not removed:
            return no_data(columns, "No Removed Executors Found!")

        rows = [
            (record.executor_id, record.time, truncate(record.reason, self.max_chars))
            for record in removed
        ]
        return pd.DataFrame(rows, columns=columns)

    def unsupported_sql_plan(self) -> pd.DataFrame:
        columns = ['sqlID', 'nodeID', 'nodeName', self._reason_column('nodeDesc')]
        if not self.store.unsupported_plan_nodes:
            return no_data(columns, "No Unsupported SQL Ops Found!")

        rows = [
            (node.sql_id, node.node_id, node.node_name, truncate(node.node_desc, self.max_chars))
            for node in self.store.unsupported_plan_nodes
        ]
        return pd.DataFrame(rows, columns=columns)

    def shuffle_skew(self) -> pd.DataFrame:
        """
        Tasks whose shuffle read size strictly exceeds skew_factor times the
        mean of their stage attempt.

        Returns:
            One row per skewed task with its own read size and the stage mean in MB
        """
        columns = ['appIndex', 'stageId', 'stageAttemptId', 'taskId', 'attempt',
                   'taskShuffleReadMB', 'avgShuffleReadMB']

        by_stage: Dict[Tuple[int, int], List] = {}
        for task in self.store.tasks:
            by_stage.setdefault((task.stage_id, task.stage_attempt_id), []).append(task)

        factor = self.config.skew_factor
        rows = []
        for (stage_id, attempt_id), tasks in sorted(by_stage.items()):
            total = sum(task.sr_totalBytesRead for task in tasks)
            count = len(tasks)
            if total == 0:
                continue
            mean = total / count
            for task in sorted(tasks, key=lambda t: (t.task_id, t.attempt)):
                # value > factor * (total / count), kept in integers where possible
                if task.sr_totalBytesRead * count > factor * total:
                    rows.append((
                        self.store.app_index, stage_id, attempt_id, task.task_id, task.attempt,
                        round_half_up(task.sr_totalBytesRead / MB, 2),
                        round_half_up(mean / MB, 2),
                    ))

        if not rows:
            return no_data(columns, "No Shuffle Skew Found!")
        logger.info(f"Found {len(rows)} skewed tasks in application {self.store.app_index}")
        return pd.DataFrame(rows, columns=columns)
