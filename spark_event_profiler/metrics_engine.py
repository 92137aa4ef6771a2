"""
Aggregation Engine

Task metrics rolled up per job, per stage and per SQL execution.

Every metric in TASK_METRICS_COLUMNS is aggregated with its mode (sum, max, or
all four of sum/max/min/avg) and rounded half-up to one decimal. Columns come
out in sorted metric-name order, named "<metric>_<agg>".

Grouping relies on three indexes:
- a task belongs to a stage through its stage id
- a stage belongs to a job when the job lists the stage id
- a job belongs to a SQL execution through its sql id
"""

from typing import Dict, List, Optional, Tuple
import logging

import pandas as pd

from spark_event_profiler.entities import TASK_METRICS_COLUMNS
from spark_event_profiler.store import EntityStore
from spark_event_profiler.utils import no_data, round_half_up

logger = logging.getLogger(__name__)

ALL_AGGREGATIONS = ('sum', 'max', 'min', 'avg')


def metric_aggregations() -> List[Tuple[str, str, str]]:
    """(output column, task column, aggregation) in output order."""
    result = []
    for column in sorted(TASK_METRICS_COLUMNS):
        mode = TASK_METRICS_COLUMNS[column]
        aggregations = ALL_AGGREGATIONS if mode == 'all' else (mode,)
        for agg in aggregations:
            result.append((f"{column}_{agg}", column, agg))
    return result


def metric_columns() -> List[str]:
    return [name for name, _, _ in metric_aggregations()]


def aggregate_task_metrics(tasks: pd.DataFrame, key: str) -> pd.DataFrame:
    """
    Aggregate task metric columns per value of ``key``.

    Args:
        tasks: one row per task, with the task metric columns and ``key``
        key: grouping column

    Returns:
        DataFrame indexed by ``key`` with a numTasks column followed by the
        rounded metric aggregates
    """
    named = {'numTasks': ('task_id', 'size')}
    for name, column, agg in metric_aggregations():
        named[name] = (column, 'mean' if agg == 'avg' else agg)

    grouped = tasks.groupby(key, sort=True).agg(**named)
    for name in metric_columns():
        grouped[name] = grouped[name].map(lambda value: round_half_up(value, 1))
    return grouped


class MetricsEngine:
    """Job, stage and SQL level task metric tables of one application."""

    def __init__(self, store: EntityStore):
        store.require_finalized()
        self.store = store
        self.app_index = store.app_index

    # ------------------------------------------------------------------
    # Index helpers
    # ------------------------------------------------------------------

    def _tasks(self) -> pd.DataFrame:
        """Tasks of stages that have a stage record."""
        tasks = self.store.tasks_frame()
        if tasks.empty:
            return tasks
        known_stages = {stage_id for stage_id, _ in self.store.stages}
        return tasks[tasks['stage_id'].isin(known_stages)]

    def _job_stage_pairs(self) -> pd.DataFrame:
        known_stages = {stage_id for stage_id, _ in self.store.stages}
        pairs = [
            (job.job_id, stage_id)
            for job in self.store.jobs.values()
            for stage_id in job.stage_ids
            if stage_id in known_stages
        ]
        return pd.DataFrame(pairs, columns=['job_id', 'stage_id'])

    def _sql_stage_list(self) -> List[Tuple[int, int]]:
        """Distinct (sql id, stage id) pairs reachable through jobs."""
        known_stages = {stage_id for stage_id, _ in self.store.stages}
        pairs = []
        for stage_id, sql_ids in self.store.stage_to_sqls().items():
            if stage_id not in known_stages:
                continue
            for sql_id in sql_ids:
                if sql_id in self.store.sql_executions:
                    pairs.append((sql_id, stage_id))
        return pairs

    def sql_stage_pairs(self) -> pd.DataFrame:
        return pd.DataFrame(self._sql_stage_list(), columns=['sql_id', 'stage_id'])

    def sql_executor_times(self) -> Dict[int, Tuple[int, int]]:
        """sql id -> (executor CPU time, executor run time) summed over its stage attempts."""
        cpu: Dict[int, int] = {}
        run: Dict[int, int] = {}
        for (stage_id, _), stage in self.store.stages.items():
            cpu[stage_id] = cpu.get(stage_id, 0) + stage.executor_cpu_time_sum
            run[stage_id] = run.get(stage_id, 0) + stage.executor_run_time_sum

        result: Dict[int, Tuple[int, int]] = {}
        for sql_id, stage_id in self._sql_stage_list():
            cpu_time, run_time = result.get(sql_id, (0, 0))
            result[sql_id] = (cpu_time + cpu[stage_id], run_time + run[stage_id])
        return result

    def _stage_durations(self) -> Dict[int, Optional[int]]:
        """Longest attempt duration per stage id."""
        result: Dict[int, Optional[int]] = {}
        for (stage_id, _), stage in self.store.stages.items():
            longest = result.setdefault(stage_id, None)
            if stage.duration is not None and (longest is None or stage.duration > longest):
                result[stage_id] = stage.duration
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def job_metrics(self) -> pd.DataFrame:
        columns = ['appIndex', 'ID', 'numTasks', 'Duration'] + metric_columns()
        tasks = self._tasks()
        pairs = self._job_stage_pairs()
        if tasks.empty or pairs.empty:
            return no_data(columns, "No Job Metrics Found!")

        joined = pairs.merge(tasks, on='stage_id', how='inner')
        if joined.empty:
            return no_data(columns, "No Job Metrics Found!")

        grouped = aggregate_task_metrics(joined, 'job_id').reset_index()
        durations = {job.job_id: job.duration for job in self.store.jobs.values()}

        grouped['appIndex'] = self.app_index
        grouped['ID'] = grouped['job_id'].map(lambda job_id: f"job_{job_id}")
        grouped['Duration'] = grouped['job_id'].map(durations)
        return grouped[columns]

    def stage_metrics(self) -> pd.DataFrame:
        columns = ['appIndex', 'ID', 'numTasks', 'Duration'] + metric_columns()
        tasks = self._tasks()
        if tasks.empty:
            return no_data(columns, "No Stage Metrics Found!")

        grouped = aggregate_task_metrics(tasks, 'stage_id').reset_index()
        durations = self._stage_durations()

        grouped['appIndex'] = self.app_index
        grouped['ID'] = grouped['stage_id'].map(lambda stage_id: f"stage_{stage_id}")
        grouped['Duration'] = grouped['stage_id'].map(durations)
        return grouped[columns]

    def job_and_stage_metrics(self) -> pd.DataFrame:
        """Job rows followed by stage rows in one table."""
        frames = [frame for frame in (self.job_metrics(), self.stage_metrics()) if not frame.empty]
        if not frames:
            return no_data(['appIndex', 'ID', 'numTasks', 'Duration'] + metric_columns(),
                           "No Job/Stage Metrics Found!")
        return pd.concat(frames, ignore_index=True)

    def sql_metrics(self) -> pd.DataFrame:
        columns = (['appIndex', 'appID', 'sqlID', 'description', 'numTasks', 'Duration',
                    'executorCPUTime', 'executorRunTime', 'executorCPURatio'] + metric_columns())
        tasks = self._tasks()
        pairs = self.sql_stage_pairs()
        if tasks.empty or pairs.empty:
            return no_data(columns, "No SQL Metrics Found!")

        joined = pairs.merge(tasks, on='stage_id', how='inner')
        if joined.empty:
            return no_data(columns, "No SQL Metrics Found!")

        grouped = aggregate_task_metrics(joined, 'sql_id')
        cpu = joined.groupby('sql_id')['executorCPUTime'].sum()
        run = joined.groupby('sql_id')['executorRunTime'].sum()
        grouped = grouped.reset_index()

        sqls = self.store.sql_executions
        grouped['appIndex'] = self.app_index
        grouped['appID'] = self.store.app_id
        grouped['sqlID'] = grouped['sql_id']
        grouped['description'] = grouped['sql_id'].map(lambda sql_id: sqls[sql_id].description)
        grouped['Duration'] = grouped['sql_id'].map(lambda sql_id: sqls[sql_id].duration)
        grouped['executorCPUTime'] = grouped['sql_id'].map(cpu)
        grouped['executorRunTime'] = grouped['sql_id'].map(run)
        grouped['executorCPURatio'] = [
            cpu_percent(cpu_time, run_time)
            for cpu_time, run_time in zip(grouped['executorCPUTime'], grouped['executorRunTime'])
        ]
        return grouped[columns]


def cpu_percent(cpu_time, run_time) -> Optional[float]:
    """Executor CPU time as a percentage of run time, rounded to two decimals."""
    if not run_time:
        return None
    return round_half_up(cpu_time / run_time * 100, 2)
