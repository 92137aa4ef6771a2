"""
Tests for start/end correlation and application end estimation.
"""
import unittest

from spark_event_profiler.correlator import Correlator, correlate
from spark_event_profiler.ingestor import ingest_events
from tests.sample_events import (
    app_end,
    app_start,
    job_end,
    job_start,
    profile_app_events,
    sql_end,
    sql_start,
    stage_completed,
    stage_submitted,
    task_end,
)


class TestCorrelator(unittest.TestCase):

    def test_durations_when_both_ends_are_known(self):
        store = correlate(ingest_events(profile_app_events()))

        self.assertEqual(store.application.end_time, 2000)
        self.assertEqual(store.application.duration, 1000)
        self.assertEqual(store.application.duration_str, '1 s')
        self.assertFalse(store.application.end_duration_estimated)
        self.assertEqual(store.jobs[0].duration, 240)
        self.assertEqual(store.jobs[0].job_result, 'JobSucceeded')
        self.assertEqual(store.jobs[1].job_result, 'JobFailed')
        self.assertEqual(store.stages[(0, 0)].duration, 80)
        self.assertEqual(store.stages[(2, 0)].failure_reason, 'Job aborted due to stage failure')
        self.assertEqual(store.sql_executions[0].duration, 300)
        self.assertEqual(store.sql_executions[0].duration_str, '0.3 s')

    def test_duration_absent_without_end(self):
        store = correlate(ingest_events([
            app_start(0),
            job_start(0, [0], 10),
            stage_submitted(0, 20),
            sql_start(0, 5),
        ]))

        self.assertIsNone(store.jobs[0].end_time)
        self.assertIsNone(store.jobs[0].duration)
        self.assertEqual(store.jobs[0].duration_str, '')
        self.assertIsNone(store.stages[(0, 0)].duration)
        self.assertIsNone(store.sql_executions[0].duration)

    def test_application_end_estimated_from_last_job_or_sql_end(self):
        store = correlate(ingest_events([
            app_start(0),
            job_start(0, [], 10),
            job_start(1, [], 20),
            sql_start(0, 30),
            job_end(0, 100),
            sql_end(0, 150),
            job_end(1, 200),
        ]))

        self.assertEqual(store.application.end_time, 200)
        self.assertEqual(store.application.duration, 200)
        self.assertTrue(store.application.end_duration_estimated)

    def test_application_end_not_estimated_without_any_end(self):
        store = correlate(ingest_events([app_start(0), job_start(0, [], 10)]))

        self.assertIsNone(store.application.end_time)
        self.assertIsNone(store.application.duration)
        self.assertFalse(store.application.end_duration_estimated)

    def test_observed_application_end_wins_over_estimate(self):
        store = correlate(ingest_events([app_start(0), job_end(0, 900), app_end(500)]))

        self.assertEqual(store.application.end_time, 500)
        self.assertFalse(store.application.end_duration_estimated)

    def test_stage_attempts_correlate_separately(self):
        store = correlate(ingest_events([
            stage_submitted(3, 100, attempt=0),
            task_end(3, 1, stage_attempt=0, run_time=40, cpu_time_ms=10),
            stage_completed(3, 100, 180, attempt=0, failure_reason='FetchFailed'),
            stage_submitted(3, 200, attempt=1),
            task_end(3, 2, stage_attempt=1, run_time=30, cpu_time_ms=20),
            task_end(3, 3, stage_attempt=1, run_time=30, cpu_time_ms=20),
            stage_completed(3, 200, 260, attempt=1),
        ]))

        first, second = store.stages[(3, 0)], store.stages[(3, 1)]
        self.assertEqual(first.duration, 80)
        self.assertEqual(first.failure_reason, 'FetchFailed')
        self.assertEqual(first.executor_run_time_sum, 40)
        self.assertEqual(second.duration, 60)
        self.assertIsNone(second.failure_reason)
        self.assertEqual(second.executor_run_time_sum, 60)
        self.assertEqual(second.executor_cpu_time_sum, 40)

    def test_unknown_events_do_not_disturb_correlation(self):
        events = profile_app_events()
        noisy = []
        for event in events:
            noisy.append(event)
            noisy.append({"Event": "com.example.CustomListenerEvent", "payload": [1, 2, 3]})

        plain = correlate(ingest_events(events))
        with_noise = correlate(ingest_events(noisy))

        self.assertEqual(len(with_noise.other_events), len(plain.other_events) + len(events))
        self.assertEqual(with_noise.application.duration, plain.application.duration)
        self.assertEqual({k: j.duration for k, j in with_noise.jobs.items()},
                         {k: j.duration for k, j in plain.jobs.items()})
        self.assertEqual({k: s.duration for k, s in with_noise.stages.items()},
                         {k: s.duration for k, s in plain.stages.items()})

    def test_estimate_ignores_zero_end_times(self):
        store = ingest_events([app_start(0), job_end(0, 0)])
        self.assertIsNone(Correlator(store).estimate_app_end())
