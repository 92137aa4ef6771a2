# spark_event_profiler/__init__.py

from .parser import parse_event_log, SparkEventParser
from .store import EntityStore, StoreNotFinalizedError
from .ingestor import EventIngestor, ingest_events
from .correlator import Correlator
from .plan_analyzer import PlanAnalyzer, SparkPlanGraph, PLAN_NODE_RULES
from .metrics_engine import MetricsEngine
from .health_check import HealthCheck
from .collect_information import CollectInformation
from .qualification import Qualification, qualification_summary
from .analyze import ApplicationInfo, analyze_event_logs
from .config import ProfilerConfig

__version__ = "0.1.0"
__all__ = [
    'parse_event_log',
    'SparkEventParser',
    'EntityStore',
    'StoreNotFinalizedError',
    'EventIngestor',
    'ingest_events',
    'Correlator',
    'PlanAnalyzer',
    'SparkPlanGraph',
    'PLAN_NODE_RULES',
    'MetricsEngine',
    'HealthCheck',
    'CollectInformation',
    'Qualification',
    'qualification_summary',
    'ApplicationInfo',
    'analyze_event_logs',
    'ProfilerConfig',
]
