"""
Information queries

Plain listings of what one application recorded: the application itself, its
executors, configuration, jobs, SQL plan metric values, accelerator jars and
SQL durations.
"""

from typing import Dict, List, Optional, Tuple
import logging
import re

import pandas as pd

from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.metrics_engine import MetricsEngine, cpu_percent
from spark_event_profiler.store import EntityStore, PROPERTY_SOURCES
from spark_event_profiler.utils import executor_sort_key, no_data

logger = logging.getLogger(__name__)

ACCELERATOR_JAR_PATTERNS = (r'.*rapids-4-spark.*jar', r'.*cudf.*jar')


class CollectInformation:
    """Read-only listings over a finalized store."""

    def __init__(self, store: EntityStore, config: Optional[ProfilerConfig] = None):
        store.require_finalized()
        self.store = store
        self.config = config or ProfilerConfig()
        self.app_index = store.app_index

    def application_info(self) -> pd.DataFrame:
        columns = ['appIndex', 'appName', 'appId', 'sparkUser', 'startTime', 'endTime',
                   'duration', 'durationStr', 'endDurationEstimated', 'sparkVersion',
                   'acceleratedMode']
        app = self.store.application
        if app is None:
            return no_data(columns, "No Application Information Found!")

        row = (self.app_index, app.app_name, app.app_id, app.spark_user, app.start_time,
               app.end_time, app.duration, app.duration_str, app.end_duration_estimated,
               app.spark_version, app.accelerated_mode)
        return pd.DataFrame([row], columns=columns)

    def executor_info(self) -> pd.DataFrame:
        """Executors left-joined with their block manager and resource profile."""
        columns = ['appIndex', 'executorID', 'host', 'totalCores', 'maxMem', 'maxOnHeapMem',
                   'maxOffHeapMem', 'exec_cpu', 'exec_mem', 'exec_gpu', 'exec_offheap',
                   'task_cpu', 'task_gpu']
        if not self.store.executors:
            return no_data(columns, "No Executor Information Found!")

        rows = []
        for executor_id in sorted(self.store.executors, key=executor_sort_key):
            executor = self.store.executors[executor_id]
            block_manager = self.store.block_managers.get(executor_id)
            profile = self.store.resource_profiles.get(executor.resource_profile_id)
            rows.append((
                self.app_index, executor_id, executor.host, executor.total_cores,
                block_manager.max_mem if block_manager else None,
                block_manager.max_on_heap_mem if block_manager else None,
                block_manager.max_off_heap_mem if block_manager else None,
                profile.exec_cpu if profile else None,
                profile.exec_mem if profile else None,
                profile.exec_gpu if profile else None,
                profile.exec_offheap if profile else None,
                profile.task_cpu if profile else None,
                profile.task_gpu if profile else None,
            ))
        return pd.DataFrame(rows, columns=columns)

    def properties(self, source: str = 'spark', key_pattern: Optional[str] = None) -> pd.DataFrame:
        """
        Properties of one source, sorted by key.

        Args:
            source: one of spark, hadoop, system, jvm, classpath
            key_pattern: regular expression the key must match from its start

        Returns:
            key / value_app<index> table
        """
        if source not in PROPERTY_SOURCES:
            raise ValueError(f"Unknown property source {source!r}, expected one of {PROPERTY_SOURCES}")

        columns = ['key', f"value_app{self.app_index}"]
        pattern = re.compile(key_pattern) if key_pattern else None
        rows = sorted(
            (record.key, record.value)
            for (record_source, _), record in self.store.properties.items()
            if record_source == source and (pattern is None or pattern.match(record.key))
        )
        if not rows:
            return no_data(columns, f"No {source} properties Found!")
        return pd.DataFrame(rows, columns=columns)

    def accelerator_properties(self) -> pd.DataFrame:
        """Spark properties of the accelerator plugin that were set explicitly."""
        return self.properties('spark', r'spark\.rapids')

    def job_info(self) -> pd.DataFrame:
        columns = ['appIndex', 'jobID', 'stageIds', 'sqlID']
        if not self.store.jobs:
            return no_data(columns, "No Job Information Found!")

        rows = [
            (self.app_index, job.job_id, list(job.stage_ids), job.sql_id)
            for job in sorted(self.store.jobs.values(), key=lambda job: job.job_id)
        ]
        return pd.DataFrame(rows, columns=columns)

    def sql_plan_metrics(self) -> pd.DataFrame:
        """
        Largest accumulator value seen for every plan node metric.

        Values come from driver accumulator updates and from the task and stage
        accumulables of every stage run by the SQL execution's jobs.
        """
        columns = ['appIndex', 'sqlID', 'nodeID', 'nodeName', 'accumulatorId', 'name',
                   'max_value', 'metricType']

        max_values = self.accumulator_max_values()
        if not max_values:
            return no_data(columns, "No SQL Plan Metrics Found!")

        metrics: Dict[Tuple[int, int], List[Tuple[str, str]]] = {}
        for metric in self.store.sql_plan_metrics:
            entry = (metric.name, metric.metric_type)
            bucket = metrics.setdefault((metric.sql_id, metric.accumulator_id), [])
            if entry not in bucket:
                bucket.append(entry)

        rows = set()
        for accum in self.store.plan_node_accums:
            key = (accum.sql_id, accum.accumulator_id)
            if key not in max_values:
                continue
            for name, metric_type in metrics.get(key, []):
                rows.add((self.app_index, accum.sql_id, accum.node_id, accum.node_name,
                          accum.accumulator_id, name, max_values[key], metric_type))

        if not rows:
            return no_data(columns, "No SQL Plan Metrics Found!")
        ordered = sorted(rows, key=lambda row: (row[1], row[2], row[3], row[4], row[5], row[7]))
        return pd.DataFrame(ordered, columns=columns)

    def accumulator_max_values(self) -> Dict[Tuple[int, int], int]:
        """(sql id, accumulator id) -> largest value from driver or task/stage updates."""
        result: Dict[Tuple[int, int], int] = {}

        def offer(key, value):
            if value is not None and (key not in result or value > result[key]):
                result[key] = value

        for accum in self.store.driver_accums:
            offer((accum.sql_id, accum.accumulator_id), accum.value)

        stage_sqls = self.store.stage_to_sqls()
        for accum in self.store.task_stage_accums:
            for sql_id in stage_sqls.get(accum.stage_id, []):
                if sql_id in self.store.sql_executions:
                    offer((sql_id, accum.accumulator_id), accum.value)
        return result

    def accelerator_jars(self) -> pd.DataFrame:
        """Accelerator plugin and cuDF jars on the classpath of an accelerated run."""
        columns = ['appIndex', 'jar']
        if not self.store.accelerated_mode:
            return no_data(columns, "No Accelerator Jars Found!")

        classpath = [key for (source, key) in self.store.properties if source == 'classpath']
        rows = []
        for pattern in ACCELERATOR_JAR_PATTERNS:
            regex = re.compile(pattern)
            rows.extend((self.app_index, entry) for entry in classpath if regex.fullmatch(entry))
        if not rows:
            return no_data(columns, "No Accelerator Jars Found!")
        return pd.DataFrame(rows, columns=columns)

    def sql_durations(self) -> pd.DataFrame:
        """Per SQL execution duration with its Dataset flag, problems and CPU share."""
        columns = ['appIndex', 'App ID', 'sqlID', 'SQL Duration', 'Contains Dataset Op',
                   'App Duration', 'Potential Problems', 'Executor CPU Time Percent']
        if not self.store.sql_executions:
            return no_data(columns, "No SQL Durations Found!")

        app_duration = self.store.application.duration if self.store.application else None
        times = MetricsEngine(self.store).sql_executor_times()
        rows = []
        for sql_id in sorted(self.store.sql_executions):
            sql = self.store.sql_executions[sql_id]
            cpu_time, run_time = times.get(sql_id, (0, 0))
            rows.append((
                self.app_index, self.store.app_id, sql_id, sql.duration, sql.has_dataset_op,
                app_duration, sql.potential_problems, cpu_percent(cpu_time, run_time),
            ))
        return pd.DataFrame(rows, columns=columns)
