"""
Pydantic models for the Spark listener events the profiler understands.

Field names follow the JSON written by Spark's JsonProtocol:
- core listener events use spaced keys ("Job ID", "Stage Info", ...)
- SQL UI events use camelCase keys ("executionId", "sparkPlanInfo", ...)

Nested structures that are only read field-by-field (Task Info, Task Metrics,
Stage Info) stay as plain dictionaries.
"""

from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field, ConfigDict

SQL_EVENT_PREFIX = 'org.apache.spark.sql.execution.ui.'


class SparkEvent(BaseModel):
    """Base model for all Spark events."""
    model_config = ConfigDict(extra='allow')
    Event: str


class SparkListenerLogStart(SparkEvent):
    """First line of every event log; carries the Spark version."""
    SparkVersion: str = Field('', alias='Spark Version')


class SparkListenerApplicationStart(SparkEvent):
    """Event sent when the application starts."""
    AppName: str = Field(..., alias='App Name')
    AppID: Optional[str] = Field(None, alias='App ID')
    Timestamp: int
    User: str = ''
    AppAttemptID: Optional[str] = Field(None, alias='App Attempt ID')


class SparkListenerApplicationEnd(SparkEvent):
    """Event sent when the application ends."""
    Timestamp: int


class SparkListenerEnvironmentUpdate(SparkEvent):
    """Spark, Hadoop, system, JVM and classpath settings of the run."""
    JVMInformation: Dict[str, Any] = Field(default_factory=dict, alias='JVM Information')
    SparkProperties: Dict[str, Any] = Field(default_factory=dict, alias='Spark Properties')
    HadoopProperties: Dict[str, Any] = Field(default_factory=dict, alias='Hadoop Properties')
    SystemProperties: Dict[str, Any] = Field(default_factory=dict, alias='System Properties')
    ClasspathEntries: Dict[str, Any] = Field(default_factory=dict, alias='Classpath Entries')


class SparkListenerResourceProfileAdded(SparkEvent):
    """Stage-level scheduling resource profile."""
    ResourceProfileID: int = Field(..., alias='Resource Profile Id')
    ExecutorResourceRequests: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, alias='Executor Resource Requests')
    TaskResourceRequests: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, alias='Task Resource Requests')


class SparkListenerJobStart(SparkEvent):
    """Event sent when a job starts."""
    JobID: int = Field(..., alias='Job ID')
    SubmissionTime: Optional[int] = Field(None, alias='Submission Time')
    StageIDs: List[int] = Field(default_factory=list, alias='Stage IDs')
    StageInfos: Optional[List[Dict[str, Any]]] = Field(default_factory=list, alias='Stage Infos')
    Properties: Optional[Dict[str, Any]] = None


class SparkListenerJobEnd(SparkEvent):
    """Event sent when a job ends."""
    JobID: int = Field(..., alias='Job ID')
    CompletionTime: int = Field(..., alias='Completion Time')
    JobResult: Optional[Dict[str, Any]] = Field(None, alias='Job Result')


class SparkListenerStageSubmitted(SparkEvent):
    """Event sent when a stage is submitted."""
    StageInfo: Dict[str, Any] = Field(..., alias='Stage Info')
    Properties: Optional[Dict[str, Any]] = None


class SparkListenerStageCompleted(SparkEvent):
    """Event sent when a stage is completed."""
    StageInfo: Dict[str, Any] = Field(..., alias='Stage Info')


class SparkListenerTaskStart(SparkEvent):
    """Event sent when a task starts."""
    StageID: int = Field(..., alias='Stage ID')
    StageAttemptID: int = Field(..., alias='Stage Attempt ID')
    TaskInfo: Dict[str, Any] = Field(..., alias='Task Info')


class SparkListenerTaskGettingResult(SparkEvent):
    """Event sent when the driver starts fetching a task result."""
    TaskInfo: Dict[str, Any] = Field(..., alias='Task Info')


class SparkListenerTaskEnd(SparkEvent):
    """
    Event sent when a task ends.

    Task Metrics is absent for some failed or killed tasks, so it is optional.
    Shuffle/Input/Output metrics are nested dictionaries inside Task Metrics.
    """
    StageID: int = Field(..., alias='Stage ID')
    StageAttemptID: int = Field(..., alias='Stage Attempt ID')
    TaskType: str = Field('', alias='Task Type')
    TaskEndReason: Dict[str, Any] = Field(..., alias='Task End Reason')
    TaskInfo: Dict[str, Any] = Field(..., alias='Task Info')
    TaskMetrics: Optional[Dict[str, Any]] = Field(None, alias='Task Metrics')
    TaskExecutorMetrics: Optional[Dict[str, Any]] = Field(None, alias='Task Executor Metrics')


class SparkListenerExecutorAdded(SparkEvent):
    """Event sent when an executor is added."""
    Timestamp: int
    ExecutorID: str = Field(..., alias='Executor ID')
    ExecutorInfo: Dict[str, Any] = Field(..., alias='Executor Info')


class SparkListenerExecutorRemoved(SparkEvent):
    """Event sent when an executor is removed."""
    Timestamp: int
    ExecutorID: str = Field(..., alias='Executor ID')
    RemovedReason: str = Field('', alias='Removed Reason')


class SparkListenerBlockManagerAdded(SparkEvent):
    """Event sent when a block manager is added."""
    Timestamp: int
    BlockManagerID: Dict[str, Any] = Field(..., alias='Block Manager ID')
    MaximumMemory: int = Field(0, alias='Maximum Memory')
    MaximumOnHeapMemory: Optional[int] = Field(None, alias='Maximum Onheap Memory')
    MaximumOffHeapMemory: Optional[int] = Field(None, alias='Maximum Offheap Memory')


class SparkListenerBlockManagerRemoved(SparkEvent):
    """Event sent when a block manager is removed."""
    Timestamp: int
    BlockManagerID: Dict[str, Any] = Field(..., alias='Block Manager ID')


# ============================================================================
# SQL UI EVENTS
# ============================================================================

class SQLPlanMetric(BaseModel):
    """Metric declared by a physical plan node."""
    model_config = ConfigDict(extra='allow')
    name: str
    accumulatorId: int
    metricType: str = 'sum'


class SparkPlanInfo(BaseModel):
    """Serialized physical plan tree of one SQL execution."""
    model_config = ConfigDict(extra='allow')
    nodeName: str
    simpleString: str = ''
    children: List['SparkPlanInfo'] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    metrics: List[SQLPlanMetric] = Field(default_factory=list)


SparkPlanInfo.model_rebuild()


class SparkListenerSQLExecutionStart(SparkEvent):
    """Event sent when a SQL execution starts."""
    executionId: int
    description: str = ''
    details: str = ''
    physicalPlanDescription: str = ''
    sparkPlanInfo: SparkPlanInfo
    time: int


class SparkListenerSQLExecutionEnd(SparkEvent):
    """Event sent when a SQL execution ends."""
    executionId: int
    time: int


class SparkListenerSQLAdaptiveExecutionUpdate(SparkEvent):
    """Adaptive query execution replaced the plan of a running SQL execution."""
    executionId: int
    physicalPlanDescription: str = ''
    sparkPlanInfo: SparkPlanInfo


class SparkListenerSQLAdaptiveSQLMetricUpdates(SparkEvent):
    """Adaptive query execution declared additional plan metrics."""
    executionId: int
    sqlPlanMetrics: List[SQLPlanMetric] = Field(default_factory=list)


class SparkListenerDriverAccumUpdates(SparkEvent):
    """Accumulator values computed on the driver, as (accumulatorId, value) pairs."""
    executionId: int
    accumUpdates: List[List[int]] = Field(default_factory=list)


EVENT_TYPE_MAP = {
    "SparkListenerLogStart": SparkListenerLogStart,
    "SparkListenerApplicationStart": SparkListenerApplicationStart,
    "SparkListenerApplicationEnd": SparkListenerApplicationEnd,
    "SparkListenerEnvironmentUpdate": SparkListenerEnvironmentUpdate,
    "SparkListenerResourceProfileAdded": SparkListenerResourceProfileAdded,
    "SparkListenerJobStart": SparkListenerJobStart,
    "SparkListenerJobEnd": SparkListenerJobEnd,
    "SparkListenerStageSubmitted": SparkListenerStageSubmitted,
    "SparkListenerStageCompleted": SparkListenerStageCompleted,
    "SparkListenerTaskStart": SparkListenerTaskStart,
    "SparkListenerTaskGettingResult": SparkListenerTaskGettingResult,
    "SparkListenerTaskEnd": SparkListenerTaskEnd,
    "SparkListenerExecutorAdded": SparkListenerExecutorAdded,
    "SparkListenerExecutorRemoved": SparkListenerExecutorRemoved,
    "SparkListenerBlockManagerAdded": SparkListenerBlockManagerAdded,
    "SparkListenerBlockManagerRemoved": SparkListenerBlockManagerRemoved,
    "SparkListenerSQLExecutionStart": SparkListenerSQLExecutionStart,
    "SparkListenerSQLExecutionEnd": SparkListenerSQLExecutionEnd,
    "SparkListenerSQLAdaptiveExecutionUpdate": SparkListenerSQLAdaptiveExecutionUpdate,
    "SparkListenerSQLAdaptiveSQLMetricUpdates": SparkListenerSQLAdaptiveSQLMetricUpdates,
    "SparkListenerDriverAccumUpdates": SparkListenerDriverAccumUpdates,
}


def short_event_name(event_type: str) -> str:
    """Strip the package of SQL UI event class names."""
    if event_type.startswith(SQL_EVENT_PREFIX):
        return event_type[len(SQL_EVENT_PREFIX):]
    return event_type
