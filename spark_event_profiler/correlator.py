"""
Correlator

Pairs every start record with its end record and fills in the derived fields:
end times, durations, results and failure reasons. When the log has no
application end event, the end is estimated from the latest job or SQL end.
"""

from typing import Optional
import logging

from spark_event_profiler.store import EntityStore
from spark_event_profiler.utils import duration, format_duration

logger = logging.getLogger(__name__)


class Correlator:
    """Derives end times and durations on a populated store."""

    def __init__(self, store: EntityStore):
        self.store = store
        self.stats = {
            'jobs_without_end': 0,
            'stages_without_completion': 0,
            'sqls_without_end': 0,
        }

    def correlate(self) -> EntityStore:
        """
        Run every correlation once, in dependency order.

        Returns:
            The same store with its derived fields populated
        """
        self._correlate_jobs()
        self._correlate_stages()
        self._correlate_sql_executions()
        self._correlate_application()

        logger.info(f"Correlated application {self.store.app_index}: {self.stats}")
        return self.store

    # ------------------------------------------------------------------

    def _correlate_jobs(self):
        for job_id, job in self.store.jobs.items():
            end = self.store.job_ends.get(job_id)
            if end is None:
                self.stats['jobs_without_end'] += 1
                continue
            job.end_time = end.end_time
            job.job_result = end.job_result
            job.failed_reason = end.failed_reason
            job.duration = duration(job.start_time, job.end_time)
            job.duration_str = format_duration(job.duration)

    def _correlate_stages(self):
        run_times = {}
        cpu_times = {}
        for task in self.store.tasks:
            key = (task.stage_id, task.stage_attempt_id)
            run_times[key] = run_times.get(key, 0) + task.executorRunTime
            cpu_times[key] = cpu_times.get(key, 0) + task.executorCPUTime

        for key, stage in self.store.stages.items():
            stage.executor_run_time_sum = run_times.get(key, 0)
            stage.executor_cpu_time_sum = cpu_times.get(key, 0)

            completed = self.store.stage_completions.get(key)
            if completed is None:
                self.stats['stages_without_completion'] += 1
                continue
            if stage.submission_time is None:
                stage.submission_time = completed.submission_time
            stage.completion_time = completed.completion_time
            stage.failure_reason = completed.failure_reason
            stage.duration = duration(stage.submission_time, stage.completion_time)
            stage.duration_str = format_duration(stage.duration)

    def _correlate_sql_executions(self):
        for sql_id, sql in self.store.sql_executions.items():
            end_time = self.store.sql_end_times.get(sql_id)
            if end_time is None:
                self.stats['sqls_without_end'] += 1
                continue
            sql.end_time = end_time
            sql.duration = duration(sql.start_time, sql.end_time)
            sql.duration_str = format_duration(sql.duration)

    def _correlate_application(self):
        app = self.store.application
        if app is None:
            logger.warning(f"Application {self.store.app_index} has no application start event")
            return

        app.spark_version = self.store.spark_version
        app.accelerated_mode = self.store.accelerated_mode

        if self.store.app_end_time is not None:
            app.end_time = self.store.app_end_time
            app.end_duration_estimated = False
        else:
            estimate = self.estimate_app_end()
            if estimate is not None:
                app.end_time = estimate
                app.end_duration_estimated = True
                logger.warning(
                    f"Application {app.app_id} has no end event, "
                    f"estimating its end from the last job or SQL end: {estimate}"
                )

        app.duration = duration(app.start_time, app.end_time)
        app.duration_str = format_duration(app.duration)

    def estimate_app_end(self) -> Optional[int]:
        """Latest job or SQL end time; None when neither exists or both are 0."""
        job_ends = [end.end_time for end in self.store.job_ends.values()]
        sql_ends = list(self.store.sql_end_times.values())
        latest = max(job_ends + sql_ends, default=0)
        return latest if latest > 0 else None


def correlate(store: EntityStore) -> EntityStore:
    """Run the correlator on a populated store."""
    return Correlator(store).correlate()
