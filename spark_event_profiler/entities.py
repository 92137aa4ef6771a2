"""
Typed records held by the entity store.

Start-side records are created by the ingestor. Fields documented as derived
stay at their defaults until the correlator or plan analyzer fills them in.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

# Aggregation mode of every task metric column: sum, max, or all (sum/max/min/avg).
TASK_METRICS_COLUMNS = {
    "duration": "all",
    "gettingResultTime": "sum",
    "executorDeserializeTime": "sum",
    "executorDeserializeCPUTime": "sum",
    "executorRunTime": "sum",
    "executorCPUTime": "sum",
    "peakExecutionMemory": "max",
    "resultSize": "max",
    "jvmGCTime": "sum",
    "resultSerializationTime": "sum",
    "memoryBytesSpilled": "sum",
    "diskBytesSpilled": "sum",
    "sr_remoteBlocksFetched": "sum",
    "sr_localBlocksFetched": "sum",
    "sr_fetchWaitTime": "sum",
    "sr_remoteBytesRead": "sum",
    "sr_remoteBytesReadToDisk": "sum",
    "sr_localBytesRead": "sum",
    "sr_totalBytesRead": "sum",
    "sw_bytesWritten": "sum",
    "sw_writeTime": "sum",
    "sw_recordsWritten": "sum",
    "input_bytesRead": "sum",
    "input_recordsRead": "sum",
    "output_bytesWritten": "sum",
    "output_recordsWritten": "sum",
}

JOB_SUCCEEDED = "JobSucceeded"


class ApplicationRecord(BaseModel):
    app_name: str
    app_id: str = ''
    spark_user: str = ''
    start_time: int
    # derived
    end_time: Optional[int] = None
    duration: Optional[int] = None
    duration_str: str = ''
    end_duration_estimated: bool = False
    spark_version: str = ''
    accelerated_mode: bool = False


class ExecutorRecord(BaseModel):
    executor_id: str
    host: str = ''
    total_cores: int = 0
    resource_profile_id: int = 0
    added_time: int


class ExecutorRemovedRecord(BaseModel):
    executor_id: str
    time: int
    reason: str = ''


class BlockManagerRecord(BaseModel):
    executor_id: str
    host: str = ''
    max_mem: int = 0
    max_on_heap_mem: Optional[int] = None
    max_off_heap_mem: Optional[int] = None
    time: int


class BlockManagerRemovedRecord(BaseModel):
    executor_id: str
    time: int


class ResourceProfileRecord(BaseModel):
    profile_id: int
    exec_cpu: Optional[float] = None
    exec_mem: Optional[float] = None
    exec_gpu: Optional[float] = None
    exec_offheap: Optional[float] = None
    task_cpu: Optional[float] = None
    task_gpu: Optional[float] = None


class PropertyRecord(BaseModel):
    source: str
    key: str
    value: str


class JobRecord(BaseModel):
    job_id: int
    start_time: Optional[int] = None
    stage_ids: List[int] = Field(default_factory=list)
    sql_id: Optional[int] = None
    # derived
    end_time: Optional[int] = None
    duration: Optional[int] = None
    duration_str: str = ''
    job_result: Optional[str] = None
    failed_reason: Optional[str] = None


class JobEndRecord(BaseModel):
    job_id: int
    end_time: int
    job_result: Optional[str] = None
    failed_reason: Optional[str] = None


class StageRecord(BaseModel):
    stage_id: int
    attempt_id: int = 0
    name: str = ''
    num_tasks: int = 0
    submission_time: Optional[int] = None
    # derived
    completion_time: Optional[int] = None
    duration: Optional[int] = None
    duration_str: str = ''
    failure_reason: Optional[str] = None
    executor_run_time_sum: int = 0
    executor_cpu_time_sum: int = 0


class StageCompletedRecord(BaseModel):
    stage_id: int
    attempt_id: int = 0
    submission_time: Optional[int] = None
    completion_time: Optional[int] = None
    failure_reason: Optional[str] = None


class TaskRecord(BaseModel):
    """One finished task attempt with its flattened metric vector (times in ms)."""
    stage_id: int
    stage_attempt_id: int
    task_id: int
    attempt: int = 0
    task_type: str = ''
    end_reason: str = ''
    successful: bool = True
    executor_id: str = ''
    host: str = ''
    locality: str = ''
    speculative: bool = False
    launch_time: int = 0
    finish_time: int = 0

    duration: int = 0
    gettingResultTime: int = 0
    executorDeserializeTime: int = 0
    executorDeserializeCPUTime: int = 0
    executorRunTime: int = 0
    executorCPUTime: int = 0
    peakExecutionMemory: int = 0
    resultSize: int = 0
    jvmGCTime: int = 0
    resultSerializationTime: int = 0
    memoryBytesSpilled: int = 0
    diskBytesSpilled: int = 0
    sr_remoteBlocksFetched: int = 0
    sr_localBlocksFetched: int = 0
    sr_fetchWaitTime: int = 0
    sr_remoteBytesRead: int = 0
    sr_remoteBytesReadToDisk: int = 0
    sr_localBytesRead: int = 0
    sr_totalBytesRead: int = 0
    sw_bytesWritten: int = 0
    sw_writeTime: int = 0
    sw_recordsWritten: int = 0
    input_bytesRead: int = 0
    input_recordsRead: int = 0
    output_bytesWritten: int = 0
    output_recordsWritten: int = 0


class SQLExecutionRecord(BaseModel):
    sql_id: int
    description: str = ''
    details: str = ''
    start_time: int
    # derived
    end_time: Optional[int] = None
    duration: Optional[int] = None
    duration_str: str = ''
    has_dataset_op: bool = False
    # 0 for Dataset plans and for executions that never ended
    sql_qual_duration: int = 0
    potential_problems: Optional[str] = None


class SQLPlanMetricRecord(BaseModel):
    sql_id: int
    name: str
    accumulator_id: int
    metric_type: str


class PlanNodeAccumRecord(BaseModel):
    sql_id: int
    node_id: int
    node_name: str
    node_desc: str
    accumulator_id: int


class DriverAccumRecord(BaseModel):
    sql_id: int
    accumulator_id: int
    value: int


class TaskStageAccumRecord(BaseModel):
    stage_id: int
    attempt_id: int
    task_id: Optional[int] = None
    accumulator_id: int
    name: Optional[str] = None
    value: Optional[int] = None


class DiagnosticFlag(BaseModel):
    sql_id: int
    node_id: int
    kind: str
    reason: str = ''


class UnsupportedPlanNode(BaseModel):
    sql_id: int
    node_id: int
    node_name: str
    node_desc: str
