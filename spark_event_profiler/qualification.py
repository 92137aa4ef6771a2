"""
Qualification Scorer

Scores how much of an application's wall-clock time went to SQL/DataFrame
work that an accelerator could take over.

    Score = round(sum(qualifying SQL duration) / app duration * 100, 2)

A SQL execution qualifies with its full duration unless it contains a Dataset
operation (it then counts 0). SQL executions of jobs that did not succeed, or
whose result is unknown, are left out altogether.
"""

from typing import Iterable, List, Optional, Set
import logging

import pandas as pd

from spark_event_profiler.entities import JOB_SUCCEEDED, SQLExecutionRecord
from spark_event_profiler.metrics_engine import MetricsEngine, cpu_percent
from spark_event_profiler.store import EntityStore
from spark_event_profiler.utils import no_data, round_half_up

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = ['appIndex', 'App Name', 'App ID', 'Score', 'Potential Problems',
                   'SQL Dataframe Duration', 'App Duration', 'Executor CPU Time Percent',
                   'App Duration Estimated']

DETAIL_COLUMNS = ['appIndex', 'appID', 'appName', 'sqlID', 'description', 'dfDuration',
                  'appDuration', 'appEndDurationEstimated', 'potentialProblems',
                  'executorCPUTime', 'executorRunTime']


class Qualification:
    """Qualification score of one finalized application."""

    def __init__(self, store: EntityStore):
        store.require_finalized()
        self.store = store
        self.app_index = store.app_index

    def unsuccessful_sql_ids(self) -> Set[int]:
        """SQL ids of jobs whose result is missing or not JobSucceeded."""
        return {
            job.sql_id for job in self.store.jobs.values()
            if job.sql_id is not None and job.job_result != JOB_SUCCEEDED
        }

    def included_sqls(self) -> List[SQLExecutionRecord]:
        excluded = self.unsuccessful_sql_ids()
        return [
            sql for sql_id, sql in sorted(self.store.sql_executions.items())
            if sql_id not in excluded
        ]

    def details(self) -> pd.DataFrame:
        """One row per included SQL execution."""
        app = self.store.application
        sqls = self.included_sqls()
        if app is None or not sqls:
            return no_data(DETAIL_COLUMNS, "No Qualification Details Found!")

        times = MetricsEngine(self.store).sql_executor_times()
        rows = []
        for sql in sqls:
            cpu_time, run_time = times.get(sql.sql_id, (None, None))
            rows.append((
                self.app_index, app.app_id, app.app_name, sql.sql_id, sql.description,
                sql.sql_qual_duration, app.duration, app.end_duration_estimated,
                sql.potential_problems, cpu_time, run_time,
            ))
        return pd.DataFrame(rows, columns=DETAIL_COLUMNS)

    def summary(self) -> pd.DataFrame:
        """
        Single-row qualification summary.

        Returns:
            DataFrame with SUMMARY_COLUMNS; Score is None when the application
            duration is unknown or zero
        """
        app = self.store.application
        if app is None:
            return no_data(SUMMARY_COLUMNS, "No Application Information Found!")

        sqls = self.included_sqls()
        df_duration = sum(sql.sql_qual_duration for sql in sqls)
        score = None
        if app.duration:
            score = round_half_up(df_duration * 100 / app.duration, 2)

        problems: List[str] = []
        for sql in sqls:
            for problem in (sql.potential_problems or '').split(','):
                if problem and problem not in problems:
                    problems.append(problem)

        times = MetricsEngine(self.store).sql_executor_times()
        cpu_time = sum(times.get(sql.sql_id, (0, 0))[0] for sql in sqls)
        run_time = sum(times.get(sql.sql_id, (0, 0))[1] for sql in sqls)

        logger.info(f"Application {app.app_id} scored {score} from {len(sqls)} SQL executions")
        row = (self.app_index, app.app_name, app.app_id, score, ','.join(problems), df_duration,
               app.duration, cpu_percent(cpu_time, run_time), app.end_duration_estimated)
        return pd.DataFrame([row], columns=SUMMARY_COLUMNS)


def qualification_summary(stores: Iterable[EntityStore]) -> pd.DataFrame:
    """Summaries of several applications in one table, highest score first."""
    frames = [Qualification(store).summary() for store in stores]
    frames = [frame for frame in frames if not frame.empty]
    if not frames:
        return no_data(SUMMARY_COLUMNS, "No Applications Qualified!")

    summary = pd.concat(frames, ignore_index=True)
    return summary.sort_values('Score', ascending=False, na_position='last',
                               kind='stable').reset_index(drop=True)


def score(store: EntityStore) -> Optional[float]:
    """Qualification score of one application."""
    summary = Qualification(store).summary()
    if summary.empty:
        return None
    return summary.loc[0, 'Score']
