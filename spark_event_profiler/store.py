"""
Entity Store

One ordered collection per entity family of a single application, keyed by
correlation id. Dictionaries keep arrival order so every report is
deterministic.

Lifecycle:
1. the ingestor inserts and appends records
2. the correlator and plan analyzer fill in derived fields
3. finalize() closes the store; queries only run on a finalized store
"""

from typing import Dict, Any, List, Optional, Tuple
import logging

import pandas as pd

from spark_event_profiler.entities import (
    ApplicationRecord,
    ExecutorRecord,
    ExecutorRemovedRecord,
    BlockManagerRecord,
    BlockManagerRemovedRecord,
    ResourceProfileRecord,
    PropertyRecord,
    JobRecord,
    JobEndRecord,
    StageRecord,
    StageCompletedRecord,
    TaskRecord,
    SQLExecutionRecord,
    SQLPlanMetricRecord,
    PlanNodeAccumRecord,
    DriverAccumRecord,
    TaskStageAccumRecord,
    DiagnosticFlag,
    UnsupportedPlanNode,
)
from spark_event_profiler.models import SparkEvent, SparkPlanInfo

logger = logging.getLogger(__name__)

PROPERTY_SOURCES = ('spark', 'hadoop', 'system', 'jvm', 'classpath')


class StoreNotFinalizedError(RuntimeError):
    """A query ran before ingestion and derivation completed."""


class EntityStore:
    """All entities reconstructed from one application's event log."""

    def __init__(self, app_index: int = 1, source: str = ''):
        self.app_index = app_index
        self.source = source
        self.finalized = False

        # Application
        self.application: Optional[ApplicationRecord] = None
        self.app_end_time: Optional[int] = None
        self.spark_version: str = ''
        self.accelerated_mode = False

        # Executors, block managers, resource profiles
        self.executors: Dict[str, ExecutorRecord] = {}
        self.executors_removed: List[ExecutorRemovedRecord] = []
        self.block_managers: Dict[str, BlockManagerRecord] = {}
        self.block_managers_removed: List[BlockManagerRemovedRecord] = []
        self.resource_profiles: Dict[int, ResourceProfileRecord] = {}

        # Environment
        self.properties: Dict[Tuple[str, str], PropertyRecord] = {}

        # Jobs and stages: start records plus end records keyed by the same id
        self.jobs: Dict[int, JobRecord] = {}
        self.job_ends: Dict[int, JobEndRecord] = {}
        self.stages: Dict[Tuple[int, int], StageRecord] = {}
        self.stage_completions: Dict[Tuple[int, int], StageCompletedRecord] = {}

        # Tasks
        self.tasks: List[TaskRecord] = []
        self.task_keys = set()

        # SQL executions and their plans
        self.sql_executions: Dict[int, SQLExecutionRecord] = {}
        self.sql_end_times: Dict[int, int] = {}
        self.sql_plans: Dict[int, SparkPlanInfo] = {}
        self.physical_plan_descriptions: Dict[int, str] = {}
        self.sql_plan_metrics_adaptive: List[SQLPlanMetricRecord] = []

        # Accumulators
        self.driver_accums: List[DriverAccumRecord] = []
        self.task_stage_accums: List[TaskStageAccumRecord] = []

        # Derived by the plan analyzer
        self.plan_graphs: Dict[int, Any] = {}
        self.sql_plan_metrics: List[SQLPlanMetricRecord] = []
        self.plan_node_accums: List[PlanNodeAccumRecord] = []
        self.diagnostic_flags: List[DiagnosticFlag] = []
        self.unsupported_plan_nodes: List[UnsupportedPlanNode] = []

        # Everything the ingestor has no handler for
        self.other_events: List[SparkEvent] = []

        self._frames: Dict[str, pd.DataFrame] = {}

    @property
    def app_id(self) -> str:
        if self.application is None:
            return ''
        return self.application.app_id

    def finalize(self):
        """Close the derive phase; the store is read-only from here on."""
        self.finalized = True
        self._frames.clear()

    def require_finalized(self):
        if not self.finalized:
            raise StoreNotFinalizedError(
                f"Application {self.app_index} is still being ingested; "
                f"run correlation and plan analysis before querying it"
            )

    # ------------------------------------------------------------------
    # Lookups used by the query modules
    # ------------------------------------------------------------------

    def property_value(self, source: str, key: str, default: Optional[str] = None) -> Optional[str]:
        record = self.properties.get((source, key))
        return record.value if record is not None else default

    def stage_to_jobs(self) -> Dict[int, List[int]]:
        """stage id -> ids of every job listing it, in job arrival order."""
        index: Dict[int, List[int]] = {}
        for job in self.jobs.values():
            for stage_id in job.stage_ids:
                index.setdefault(stage_id, []).append(job.job_id)
        return index

    def stage_to_sqls(self) -> Dict[int, List[int]]:
        """stage id -> distinct SQL ids reachable through its jobs."""
        index: Dict[int, List[int]] = {}
        for stage_id, job_ids in self.stage_to_jobs().items():
            sql_ids = []
            for job_id in job_ids:
                sql_id = self.jobs[job_id].sql_id
                if sql_id is not None and sql_id not in sql_ids:
                    sql_ids.append(sql_id)
            if sql_ids:
                index[stage_id] = sql_ids
        return index

    def records_frame(self, name: str, records: List[Any], columns: List[str]) -> pd.DataFrame:
        """DataFrame of a record family, cached once the store is finalized."""
        if self.finalized and name in self._frames:
            return self._frames[name]
        if records:
            frame = pd.DataFrame([record.model_dump() for record in records])
        else:
            frame = pd.DataFrame(columns=columns)
        if self.finalized:
            self._frames[name] = frame
        return frame

    def tasks_frame(self) -> pd.DataFrame:
        return self.records_frame('tasks', self.tasks, list(TaskRecord.model_fields))

    def summary(self) -> Dict[str, int]:
        """Entity counts per family, for logging."""
        return {
            'executors': len(self.executors),
            'jobs': len(self.jobs),
            'stages': len(self.stages),
            'tasks': len(self.tasks),
            'sql_executions': len(self.sql_executions),
            'properties': len(self.properties),
            'other_events': len(self.other_events),
        }
