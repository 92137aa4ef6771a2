"""
Report writers for profiling and qualification results.

Profiling writes one text report with a section per query, the physical plan
descriptions of every application and, on request, DOT plan graphs.
Qualification writes the score summary as text, CSV and JSON.
"""

import json
import logging
from pathlib import Path
from typing import Callable, List, Sequence

import numpy as np
import pandas as pd

from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.qualification import qualification_summary
from spark_event_profiler.store import EntityStore
from spark_event_profiler.utils import is_no_data
from spark_event_profiler.visualizer import write_dot_graphs

logger = logging.getLogger(__name__)

PROFILING_REPORT = 'profiling_report.log'
QUALIFICATION_PREFIX = 'qualification_summary'


class NpEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super(NpEncoder, self).default(obj)


def format_table(frame: pd.DataFrame, num_rows: int = 1000) -> str:
    """Text rendering of a query result, or its no-data message."""
    if is_no_data(frame):
        return frame.attrs['message']
    if frame.empty:
        return "No Data Found!"
    return frame.head(num_rows).to_string(index=False)


def frame_records(frame: pd.DataFrame) -> List[dict]:
    """Rows as dictionaries with missing values as None."""
    return frame.astype(object).where(pd.notna(frame), None).to_dict(orient='records')


# ============================================================================
# PROFILING
# ============================================================================

# (section header, query over one application session)
PROFILING_SECTIONS: Sequence = (
    ("Application Information", lambda app: app.information.application_info()),
    ("Executor Information", lambda app: app.information.executor_info()),
    ("Accelerator Properties Set Explicitly", lambda app: app.information.accelerator_properties()),
    ("Accelerator Jar and cuDF Jar", lambda app: app.information.accelerator_jars()),
    ("Job Information", lambda app: app.information.job_info()),
    ("SQL Plan Metrics for Application", lambda app: app.information.sql_plan_metrics()),
    ("Job + Stage level aggregated task metrics", lambda app: app.metrics.job_and_stage_metrics()),
    ("SQL level aggregated task metrics", lambda app: app.metrics.sql_metrics()),
    ("SQL Duration and Executor CPU Time Percent", lambda app: app.information.sql_durations()),
    ("Shuffle Skew Check", lambda app: app.health.shuffle_skew()),
    ("Failed tasks", lambda app: app.health.failed_tasks()),
    ("Failed stages", lambda app: app.health.failed_stages()),
    ("Failed jobs", lambda app: app.health.failed_jobs()),
    ("Removed BlockManagers", lambda app: app.health.removed_block_managers()),
    ("Removed Executors", lambda app: app.health.removed_executors()),
    ("Unsupported SQL Plan", lambda app: app.health.unsupported_sql_plan()),
)


def render_profiling_report(applications: Sequence, num_rows: int = 1000) -> str:
    """
    Text profiling report of analyzed application sessions.

    Args:
        applications: sessions exposing ``information``, ``metrics`` and ``health``
        num_rows: rows printed per table

    Returns:
        The report text
    """
    parts = []
    for header, query in PROFILING_SECTIONS:
        parts.append(f"\n{header}:\n")
        for app in applications:
            parts.append(format_table(query(app), num_rows))
            parts.append("\n")
    return ''.join(parts)


def write_plan_descriptions(store: EntityStore, output_dir: str) -> str:
    """Write the physical plan description of every SQL execution, by SQL id."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    path = Path(output_dir) / f"planDescriptions-{store.app_id}"
    with open(path, 'w') as f:
        for sql_id in sorted(store.physical_plan_descriptions):
            f.write("\n=============================\n")
            f.write(f"Plan for SQL ID : {sql_id}")
            f.write("\n=============================\n")
            f.write(store.physical_plan_descriptions[sql_id])
    return str(path)


def write_profiling_report(applications: Sequence, config: ProfilerConfig) -> List[str]:
    """Write the profiling report, plan descriptions and optional DOT graphs."""
    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report_path = output_dir / PROFILING_REPORT
    with open(report_path, 'w') as f:
        f.write(render_profiling_report(applications, config.num_output_rows))
    paths = [str(report_path)]

    for app in applications:
        paths.append(write_plan_descriptions(app.store, str(output_dir)))
        if config.generate_dot:
            max_values = app.information.accumulator_max_values()
            paths.extend(write_dot_graphs(app.store, str(output_dir / 'dot'), max_values))

    logger.info(f"Profiling report written to {report_path}")
    return paths


# ============================================================================
# QUALIFICATION
# ============================================================================

def write_qualification_report(applications: Sequence, config: ProfilerConfig,
                               echo: Callable[[str], None] = print) -> List[str]:
    """Write the qualification summary of all applications, best score first."""
    output_dir = Path(config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    summary = qualification_summary([app.store for app in applications])
    echo(format_table(summary, config.num_output_rows))

    csv_path = output_dir / f"{QUALIFICATION_PREFIX}.csv"
    json_path = output_dir / f"{QUALIFICATION_PREFIX}.json"
    summary.to_csv(csv_path, index=False)
    with open(json_path, 'w') as f:
        json.dump(frame_records(summary), f, indent=2, cls=NpEncoder)

    logger.info(f"Qualification summary written to {csv_path} and {json_path}")
    return [str(csv_path), str(json_path)]
