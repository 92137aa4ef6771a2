"""
Event Ingestor

Turns the ordered event stream of one application into entity records.
Each event kind has a handler; kinds without a handler are kept in the
store's "other events" bucket. A record that does not fit its expected shape
is logged and skipped, ingestion never stops on a single bad record.

Handlers only insert or append. Durations, estimates and plan flags are
derived later by the correlator and the plan analyzer.
"""

from typing import Any, Dict, Iterable, List, Optional
import logging

from spark_event_profiler.config import ProfilerConfig
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
    DriverAccumRecord,
    TaskStageAccumRecord,
)
from spark_event_profiler.models import SparkEvent, short_event_name
from spark_event_profiler.parser import SparkEventParser
from spark_event_profiler.store import EntityStore

logger = logging.getLogger(__name__)

SQL_EXECUTION_ID_KEY = 'spark.sql.execution.id'
NANOS_PER_MILLI = 1_000_000


class EventIngestor:
    """Dispatches events to per-kind handlers that populate an EntityStore."""

    def __init__(self, store: EntityStore, config: Optional[ProfilerConfig] = None):
        self.store = store
        self.config = config or ProfilerConfig()
        self.parser = SparkEventParser(strict_mode=self.config.strict_mode)
        self.handlers = {
            'SparkListenerLogStart': self._on_log_start,
            'SparkListenerApplicationStart': self._on_application_start,
            'SparkListenerApplicationEnd': self._on_application_end,
            'SparkListenerEnvironmentUpdate': self._on_environment_update,
            'SparkListenerResourceProfileAdded': self._on_resource_profile_added,
            'SparkListenerExecutorAdded': self._on_executor_added,
            'SparkListenerExecutorRemoved': self._on_executor_removed,
            'SparkListenerBlockManagerAdded': self._on_block_manager_added,
            'SparkListenerBlockManagerRemoved': self._on_block_manager_removed,
            'SparkListenerJobStart': self._on_job_start,
            'SparkListenerJobEnd': self._on_job_end,
            'SparkListenerStageSubmitted': self._on_stage_submitted,
            'SparkListenerStageCompleted': self._on_stage_completed,
            'SparkListenerTaskStart': self._on_task_start,
            'SparkListenerTaskGettingResult': self._on_task_start,
            'SparkListenerTaskEnd': self._on_task_end,
            'SparkListenerSQLExecutionStart': self._on_sql_start,
            'SparkListenerSQLExecutionEnd': self._on_sql_end,
            'SparkListenerSQLAdaptiveExecutionUpdate': self._on_sql_adaptive_update,
            'SparkListenerSQLAdaptiveSQLMetricUpdates': self._on_sql_adaptive_metric_updates,
            'SparkListenerDriverAccumUpdates': self._on_driver_accum_updates,
        }
        self.stats = {
            'handled_events': 0,
            'other_events': 0,
            'failed_events': 0,
        }

    def ingest(self, events: Iterable[Any]) -> EntityStore:
        """
        Ingest an ordered sequence of events.

        Args:
            events: raw event dictionaries or already-parsed SparkEvent models

        Returns:
            The populated store
        """
        for item in events:
            event = item if isinstance(item, SparkEvent) else self.parser.parse_event(item)
            if event is None:
                self.stats['failed_events'] += 1
                continue
            self.ingest_event(event)

        logger.info(f"Ingested application {self.store.app_index}: {self.stats}")
        return self.store

    def ingest_event(self, event: SparkEvent):
        """Dispatch one validated event."""
        handler = self.handlers.get(short_event_name(event.Event))
        if handler is None:
            self.store.other_events.append(event)
            self.stats['other_events'] += 1
            return

        try:
            handler(event)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping {event.Event}: {e}")
            self.stats['failed_events'] += 1
            if self.config.strict_mode:
                raise
            return
        self.stats['handled_events'] += 1

    # ------------------------------------------------------------------
    # Application and environment
    # ------------------------------------------------------------------

    def _on_log_start(self, event):
        self.store.spark_version = event.SparkVersion

    def _on_application_start(self, event):
        if self.store.application is not None:
            logger.warning(f"Ignoring second application start for {event.AppID}")
            return
        self.store.application = ApplicationRecord(
            app_name=event.AppName,
            app_id=event.AppID or '',
            spark_user=event.User,
            start_time=event.Timestamp,
        )

    def _on_application_end(self, event):
        if self.store.app_end_time is None:
            self.store.app_end_time = event.Timestamp

    def _on_environment_update(self, event):
        sections = (
            ('spark', event.SparkProperties),
            ('hadoop', event.HadoopProperties),
            ('system', event.SystemProperties),
            ('jvm', event.JVMInformation),
            ('classpath', event.ClasspathEntries),
        )
        for source, values in sections:
            for key, value in values.items():
                self.store.properties[(source, key)] = PropertyRecord(
                    source=source, key=key, value=str(value))

        plugins = str(event.SparkProperties.get('spark.plugins', ''))
        enabled = str(event.SparkProperties.get(self.config.accelerator_enabled_key, 'true'))
        self.store.accelerated_mode = (
            self.config.accelerator_plugin in plugins and enabled.strip().lower() != 'false'
        )
        if self.store.accelerated_mode:
            logger.info(f"Application {self.store.app_index} ran with accelerated execution")

    def _on_resource_profile_added(self, event):
        executor_requests = event.ExecutorResourceRequests
        task_requests = event.TaskResourceRequests

        def amount(requests: Dict[str, Dict[str, Any]], name: str):
            request = requests.get(name)
            return request.get('Amount') if isinstance(request, dict) else None

        self.store.resource_profiles[event.ResourceProfileID] = ResourceProfileRecord(
            profile_id=event.ResourceProfileID,
            exec_cpu=amount(executor_requests, 'cores'),
            exec_mem=amount(executor_requests, 'memory'),
            exec_gpu=amount(executor_requests, 'gpu'),
            exec_offheap=amount(executor_requests, 'offHeap'),
            task_cpu=amount(task_requests, 'cpus'),
            task_gpu=amount(task_requests, 'gpu'),
        )

    # ------------------------------------------------------------------
    # Executors and block managers
    # ------------------------------------------------------------------

    def _on_executor_added(self, event):
        if event.ExecutorID in self.store.executors:
            logger.warning(f"Executor {event.ExecutorID} added twice, keeping the first")
            return
        info = event.ExecutorInfo
        self.store.executors[event.ExecutorID] = ExecutorRecord(
            executor_id=event.ExecutorID,
            host=info.get('Host', ''),
            total_cores=info.get('Total Cores', 0),
            resource_profile_id=info.get('Resource Profile Identifier', 0),
            added_time=event.Timestamp,
        )

    def _on_executor_removed(self, event):
        self.store.executors_removed.append(ExecutorRemovedRecord(
            executor_id=event.ExecutorID,
            time=event.Timestamp,
            reason=event.RemovedReason,
        ))

    def _on_block_manager_added(self, event):
        executor_id = str(event.BlockManagerID['Executor ID'])
        if executor_id in self.store.block_managers:
            logger.debug(f"Block manager of executor {executor_id} registered again")
            return
        self.store.block_managers[executor_id] = BlockManagerRecord(
            executor_id=executor_id,
            host=event.BlockManagerID.get('Host', ''),
            max_mem=event.MaximumMemory,
            max_on_heap_mem=event.MaximumOnHeapMemory,
            max_off_heap_mem=event.MaximumOffHeapMemory,
            time=event.Timestamp,
        )

    def _on_block_manager_removed(self, event):
        self.store.block_managers_removed.append(BlockManagerRemovedRecord(
            executor_id=str(event.BlockManagerID['Executor ID']),
            time=event.Timestamp,
        ))

    # ------------------------------------------------------------------
    # Jobs and stages
    # ------------------------------------------------------------------

    def _on_job_start(self, event):
        if event.JobID in self.store.jobs:
            logger.warning(f"Job {event.JobID} started twice, keeping the first")
            return

        sql_id = None
        properties = event.Properties or {}
        raw_sql_id = properties.get(SQL_EXECUTION_ID_KEY)
        if raw_sql_id not in (None, ''):
            sql_id = int(raw_sql_id)

        stage_ids: List[int] = []
        for stage_id in event.StageIDs:
            if stage_id not in stage_ids:
                stage_ids.append(stage_id)

        self.store.jobs[event.JobID] = JobRecord(
            job_id=event.JobID,
            start_time=event.SubmissionTime,
            stage_ids=stage_ids,
            sql_id=sql_id,
        )

    def _on_job_end(self, event):
        if event.JobID in self.store.job_ends:
            logger.warning(f"Job {event.JobID} ended twice, keeping the first")
            return
        if event.JobID not in self.store.jobs:
            logger.warning(f"Job {event.JobID} ended without a recorded start")

        result = event.JobResult or {}
        exception = result.get('Exception')
        failed_reason = exception.get('Message') if isinstance(exception, dict) else None

        self.store.job_ends[event.JobID] = JobEndRecord(
            job_id=event.JobID,
            end_time=event.CompletionTime,
            job_result=result.get('Result'),
            failed_reason=failed_reason,
        )

    def _on_stage_submitted(self, event):
        info = event.StageInfo
        key = (info['Stage ID'], info.get('Stage Attempt ID', 0))
        if key in self.store.stages:
            logger.warning(f"Stage {key[0]} attempt {key[1]} submitted twice, keeping the first")
            return
        self.store.stages[key] = StageRecord(
            stage_id=key[0],
            attempt_id=key[1],
            name=info.get('Stage Name', ''),
            num_tasks=info.get('Number of Tasks', 0),
            submission_time=info.get('Submission Time'),
        )

    def _on_stage_completed(self, event):
        info = event.StageInfo
        key = (info['Stage ID'], info.get('Stage Attempt ID', 0))
        if key not in self.store.stages:
            logger.warning(f"Stage {key[0]} attempt {key[1]} completed without a recorded submission")

        accums = _accum_records(key[0], key[1], None, info.get('Accumulables'))
        self.store.stage_completions[key] = StageCompletedRecord(
            stage_id=key[0],
            attempt_id=key[1],
            submission_time=info.get('Submission Time'),
            completion_time=info.get('Completion Time'),
            failure_reason=info.get('Failure Reason'),
        )
        self.store.task_stage_accums.extend(accums)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _on_task_start(self, event):
        # Task starts and result fetches carry nothing the end event does not repeat.
        pass

    def _on_task_end(self, event):
        info = event.TaskInfo
        key = (event.StageID, event.StageAttemptID, info['Task ID'], info.get('Attempt', 0))
        if key in self.store.task_keys:
            logger.warning(f"Task {key[2]} attempt {key[3]} ended twice, keeping the first")
            return

        reason = event.TaskEndReason.get('Reason', '')
        launch_time = info.get('Launch Time', 0)
        finish_time = info.get('Finish Time', 0)
        getting_result_at = info.get('Getting Result Time', 0)

        task = TaskRecord(
            stage_id=event.StageID,
            stage_attempt_id=event.StageAttemptID,
            task_id=key[2],
            attempt=key[3],
            task_type=event.TaskType,
            end_reason=_describe_end_reason(event.TaskEndReason),
            successful=(reason == 'Success' and not info.get('Failed', False)
                        and not info.get('Killed', False)),
            executor_id=str(info.get('Executor ID', '')),
            host=info.get('Host', ''),
            locality=info.get('Locality', ''),
            speculative=info.get('Speculative', False),
            launch_time=launch_time,
            finish_time=finish_time,
            duration=finish_time - launch_time if finish_time else 0,
            gettingResultTime=finish_time - getting_result_at if getting_result_at else 0,
            **_flatten_task_metrics(event.TaskMetrics or {}),
        )
        accums = _accum_records(event.StageID, event.StageAttemptID, key[2], info.get('Accumulables'))
        self.store.task_keys.add(key)
        self.store.tasks.append(task)
        self.store.task_stage_accums.extend(accums)

    # ------------------------------------------------------------------
    # SQL executions
    # ------------------------------------------------------------------

    def _on_sql_start(self, event):
        if event.executionId in self.store.sql_executions:
            logger.warning(f"SQL execution {event.executionId} started twice, keeping the first")
            return
        self.store.sql_executions[event.executionId] = SQLExecutionRecord(
            sql_id=event.executionId,
            description=event.description,
            details=event.details,
            start_time=event.time,
        )
        self.store.sql_plans[event.executionId] = event.sparkPlanInfo
        self.store.physical_plan_descriptions[event.executionId] = event.physicalPlanDescription

    def _on_sql_end(self, event):
        if event.executionId not in self.store.sql_end_times:
            self.store.sql_end_times[event.executionId] = event.time

    def _on_sql_adaptive_update(self, event):
        self.store.sql_plans[event.executionId] = event.sparkPlanInfo
        self.store.physical_plan_descriptions[event.executionId] = event.physicalPlanDescription

    def _on_sql_adaptive_metric_updates(self, event):
        for metric in event.sqlPlanMetrics:
            self.store.sql_plan_metrics_adaptive.append(SQLPlanMetricRecord(
                sql_id=event.executionId,
                name=metric.name,
                accumulator_id=metric.accumulatorId,
                metric_type=metric.metricType,
            ))

    def _on_driver_accum_updates(self, event):
        for accumulator_id, value in event.accumUpdates:
            self.store.driver_accums.append(DriverAccumRecord(
                sql_id=event.executionId,
                accumulator_id=accumulator_id,
                value=value,
            ))


def ingest_events(events: Iterable[Any], app_index: int = 1,
                  config: Optional[ProfilerConfig] = None) -> EntityStore:
    """Ingest events into a fresh store."""
    return EventIngestor(EntityStore(app_index=app_index), config).ingest(events)


def _accum_value(value: Any) -> Optional[int]:
    """Accumulator values are numbers or numeric strings; anything else is ignored."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _accum_records(stage_id: int, attempt_id: int, task_id: Optional[int],
                   accumulables: Optional[List[Dict[str, Any]]]) -> List[TaskStageAccumRecord]:
    """Numeric accumulables of a task or stage; entries without an id or a number are left out."""
    records = []
    for accum in accumulables or []:
        value = _accum_value(accum.get('Value'))
        if accum.get('ID') is None or value is None:
            continue
        records.append(TaskStageAccumRecord(
            stage_id=stage_id,
            attempt_id=attempt_id,
            task_id=task_id,
            accumulator_id=accum['ID'],
            name=accum.get('Name'),
            value=value,
        ))
    return records


def _describe_end_reason(end_reason: Dict[str, Any]) -> str:
    """One string per task end reason, e.g. 'ExceptionFailure: java.io.IOException: disk'."""
    reason = end_reason.get('Reason', '')
    if reason == 'Success':
        return reason

    detail = None
    for field in ('Description', 'Message', 'Loss Reason', 'Kill Reason'):
        if end_reason.get(field):
            detail = str(end_reason[field])
            break
    if end_reason.get('Class Name'):
        detail = f"{end_reason['Class Name']}: {detail}" if detail else end_reason['Class Name']

    text = f"{reason}: {detail}" if detail else reason
    if end_reason.get('Full Stack Trace'):
        text = f"{text}\n{end_reason['Full Stack Trace']}"
    return text


def _flatten_task_metrics(metrics: Dict[str, Any]) -> Dict[str, int]:
    """Map Spark's nested Task Metrics onto the flat metric columns (CPU and write times in ms)."""
    # Spark writes null for metrics it did not collect
    shuffle_read = metrics.get('Shuffle Read Metrics') or {}
    shuffle_write = metrics.get('Shuffle Write Metrics') or {}
    input_metrics = metrics.get('Input Metrics') or {}
    output_metrics = metrics.get('Output Metrics') or {}

    remote_bytes = shuffle_read.get('Remote Bytes Read') or 0
    local_bytes = shuffle_read.get('Local Bytes Read') or 0

    return {
        'executorDeserializeTime': metrics.get('Executor Deserialize Time') or 0,
        'executorDeserializeCPUTime':
            (metrics.get('Executor Deserialize CPU Time') or 0) // NANOS_PER_MILLI,
        'executorRunTime': metrics.get('Executor Run Time') or 0,
        'executorCPUTime': (metrics.get('Executor CPU Time') or 0) // NANOS_PER_MILLI,
        'peakExecutionMemory': metrics.get('Peak Execution Memory') or 0,
        'resultSize': metrics.get('Result Size') or 0,
        'jvmGCTime': metrics.get('JVM GC Time') or 0,
        'resultSerializationTime': metrics.get('Result Serialization Time') or 0,
        'memoryBytesSpilled': metrics.get('Memory Bytes Spilled') or 0,
        'diskBytesSpilled': metrics.get('Disk Bytes Spilled') or 0,
        'sr_remoteBlocksFetched': shuffle_read.get('Remote Blocks Fetched') or 0,
        'sr_localBlocksFetched': shuffle_read.get('Local Blocks Fetched') or 0,
        'sr_fetchWaitTime': shuffle_read.get('Fetch Wait Time') or 0,
        'sr_remoteBytesRead': remote_bytes,
        'sr_remoteBytesReadToDisk': shuffle_read.get('Remote Bytes Read To Disk') or 0,
        'sr_localBytesRead': local_bytes,
        'sr_totalBytesRead': remote_bytes + local_bytes,
        'sw_bytesWritten': shuffle_write.get('Shuffle Bytes Written') or 0,
        'sw_writeTime': (shuffle_write.get('Shuffle Write Time') or 0) // NANOS_PER_MILLI,
        'sw_recordsWritten': shuffle_write.get('Shuffle Records Written') or 0,
        'input_bytesRead': input_metrics.get('Bytes Read') or 0,
        'input_recordsRead': input_metrics.get('Records Read') or 0,
        'output_bytesWritten': output_metrics.get('Bytes Written') or 0,
        'output_recordsWritten': output_metrics.get('Records Written') or 0,
    }
