"""
Tests for turning events into entity records.
"""
import unittest

import pytest

from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.ingestor import EventIngestor, ingest_events
from spark_event_profiler.parser import SparkEventParser
from spark_event_profiler.store import EntityStore
from tests.sample_events import (
    accumulable,
    app_start,
    block_manager_added,
    driver_accum_updates,
    environment_update,
    exception_failure,
    executor_added,
    job_end,
    job_start,
    plan_node,
    profile_app_events,
    resource_profile,
    sql_adaptive_update,
    sql_start,
    stage_completed,
    stage_submitted,
    task_end,
)


class TestEventIngestor(unittest.TestCase):

    def setUp(self):
        self.store = ingest_events(profile_app_events())

    def test_populates_every_family(self):
        store = self.store
        self.assertEqual(store.application.app_id, 'app-20210101-0001')
        self.assertEqual(store.application.spark_user, 'alice')
        self.assertEqual(store.spark_version, '3.1.1')
        self.assertEqual(store.app_end_time, 2000)
        self.assertEqual(list(store.executors), ['driver', '1', '2'])
        self.assertEqual(list(store.block_managers), ['driver', '1'])
        self.assertEqual(len(store.executors_removed), 1)
        self.assertEqual(len(store.block_managers_removed), 1)
        self.assertEqual(list(store.jobs), [0, 1])
        self.assertEqual(list(store.stages), [(0, 0), (1, 0), (2, 0)])
        self.assertEqual(len(store.tasks), 5)
        self.assertEqual(list(store.sql_executions), [0])
        self.assertEqual(store.resource_profiles[0].exec_cpu, 4)

    def test_job_links_to_sql_execution(self):
        self.assertEqual(self.store.jobs[0].sql_id, 0)
        self.assertEqual(self.store.jobs[0].stage_ids, [0, 1])
        self.assertIsNone(self.store.jobs[1].sql_id)
        self.assertEqual(self.store.job_ends[1].failed_reason, "Job aborted due to stage failure")

    def test_unknown_events_are_kept_aside(self):
        self.assertEqual([event.Event for event in self.store.other_events],
                         ['SparkListenerUnpersistRDD'])

    def test_ingestion_leaves_derived_fields_alone(self):
        self.assertIsNone(self.store.application.duration)
        self.assertIsNone(self.store.jobs[0].end_time)
        self.assertIsNone(self.store.stages[(0, 0)].completion_time)
        self.assertIsNone(self.store.sql_executions[0].duration)
        self.assertFalse(self.store.finalized)

    def test_properties_by_source(self):
        self.assertEqual(self.store.property_value('spark', 'spark.master'), 'local[4]')
        self.assertEqual(self.store.property_value('hadoop', 'fs.defaultFS'), 'file:///')
        self.assertEqual(self.store.property_value('system', 'user.timezone'), 'UTC')
        self.assertIsNone(self.store.property_value('spark', 'spark.missing'))
        self.assertFalse(self.store.accelerated_mode)


class TestTaskFlattening(unittest.TestCase):

    def test_task_metrics_are_flattened_to_milliseconds(self):
        store = ingest_events([
            task_end(3, 7, launch=100, finish=350, run_time=200, cpu_time_ms=150,
                     shuffle_read=1024, gc_time=5),
        ])
        task = store.tasks[0]

        self.assertTrue(task.successful)
        self.assertEqual(task.end_reason, 'Success')
        self.assertEqual(task.duration, 250)
        self.assertEqual(task.executorRunTime, 200)
        self.assertEqual(task.executorCPUTime, 150)
        self.assertEqual(task.executorDeserializeCPUTime, 2)
        self.assertEqual(task.sw_writeTime, 3)
        self.assertEqual(task.sr_remoteBytesRead, 1024)
        self.assertEqual(task.sr_totalBytesRead, 1024)
        self.assertEqual(task.jvmGCTime, 5)
        self.assertEqual(task.resultSize, 100)

    def test_failed_task_keeps_full_reason(self):
        store = ingest_events([task_end(1, 1, reason=exception_failure("x" * 150))])
        task = store.tasks[0]

        self.assertFalse(task.successful)
        self.assertTrue(task.end_reason.startswith("ExceptionFailure: java.lang.RuntimeException: xxx"))
        self.assertIn("x" * 150, task.end_reason)

    def test_task_and_stage_accumulables_are_recorded(self):
        store = ingest_events([
            task_end(1, 1, accumulables=[accumulable(5, "12"), accumulable(6, "n/a")]),
            stage_completed(1, 0, 10, accumulables=[accumulable(5, 40)]),
        ])
        values = [(accum.task_id, accum.accumulator_id, accum.value) for accum in store.task_stage_accums]
        self.assertEqual(values, [(1, 5, 12), (None, 5, 40)])

    def test_task_without_metrics(self):
        event = task_end(1, 1, reason={"Reason": "TaskKilled", "Kill Reason": "stage cancelled"})
        del event["Task Metrics"]
        store = ingest_events([event])

        self.assertEqual(store.tasks[0].end_reason, "TaskKilled: stage cancelled")
        self.assertEqual(store.tasks[0].executorRunTime, 0)

    def test_null_metric_values_count_as_zero(self):
        event = task_end(1, 1, run_time=40, shuffle_read=2048)
        event["Task Metrics"]["Shuffle Read Metrics"]["Local Bytes Read"] = None
        event["Task Metrics"]["Executor CPU Time"] = None
        event["Task Metrics"]["Output Metrics"] = None
        store = ingest_events([event])

        self.assertEqual(len(store.tasks), 1)
        task = store.tasks[0]
        self.assertEqual(task.executorRunTime, 40)
        self.assertEqual(task.executorCPUTime, 0)
        self.assertEqual(task.sr_localBytesRead, 0)
        self.assertEqual(task.sr_totalBytesRead, 2048)
        self.assertEqual(task.output_bytesWritten, 0)

    def test_task_start_and_getting_result_are_handled_without_records(self):
        store = EntityStore()
        ingestor = EventIngestor(store)
        ingestor.ingest([
            {"Event": "SparkListenerTaskStart", "Stage ID": 1, "Stage Attempt ID": 0,
             "Task Info": {"Task ID": 1}},
            {"Event": "SparkListenerTaskGettingResult", "Task Info": {"Task ID": 1}},
        ])

        self.assertEqual(ingestor.stats['handled_events'], 2)
        self.assertEqual(store.other_events, [])
        self.assertEqual(store.tasks, [])


class TestDuplicatesAndErrors(unittest.TestCase):

    def test_duplicate_starts_keep_the_first(self):
        store = ingest_events([
            app_start(10, app_id='first'),
            app_start(20, app_id='second'),
            job_start(0, [0], 100),
            job_start(0, [5], 200),
            stage_submitted(0, 110),
            stage_submitted(0, 120),
            executor_added('1', 5, cores=2),
            executor_added('1', 6, cores=8),
            task_end(0, 1, finish=150),
            task_end(0, 1, finish=190),
        ])
        self.assertEqual(store.application.app_id, 'first')
        self.assertEqual(store.jobs[0].start_time, 100)
        self.assertEqual(store.stages[(0, 0)].submission_time, 110)
        self.assertEqual(store.executors['1'].total_cores, 2)
        self.assertEqual(len(store.tasks), 1)
        self.assertEqual(store.tasks[0].finish_time, 150)

    def test_bad_record_is_skipped_and_ingestion_continues(self):
        broken = stage_submitted(4, 10)
        del broken["Stage Info"]["Stage ID"]
        store = EntityStore()
        ingestor = EventIngestor(store)
        ingestor.ingest([broken, {"Event": "SparkListenerJobStart"}, job_start(1, [4], 20)])

        self.assertEqual(list(store.stages), [])
        self.assertEqual(list(store.jobs), [1])
        self.assertEqual(ingestor.stats['failed_events'], 2)
        self.assertEqual(ingestor.stats['handled_events'], 1)

    def test_strict_mode_raises_on_bad_record(self):
        broken = stage_submitted(4, 10)
        del broken["Stage Info"]["Stage ID"]
        ingestor = EventIngestor(EntityStore(), ProfilerConfig(strict_mode=True))
        with self.assertRaises(KeyError):
            ingestor.ingest([broken])

    def test_accumulable_without_id_does_not_split_a_task(self):
        store = EntityStore()
        ingestor = EventIngestor(store)
        ingestor.ingest([
            stage_submitted(1, 0),
            task_end(1, 7, accumulables=[{"Name": "x", "Value": 3}, accumulable(5, 9)]),
            stage_completed(1, 0, 10, accumulables=[{"Name": "y", "Value": 4}]),
        ])

        self.assertEqual([task.task_id for task in store.tasks], [7])
        self.assertIn((1, 0), store.stage_completions)
        self.assertEqual([(accum.task_id, accum.accumulator_id, accum.value)
                          for accum in store.task_stage_accums], [(7, 5, 9)])
        self.assertEqual(ingestor.stats['failed_events'], 0)
        self.assertEqual(ingestor.stats['handled_events'], 3)

    def test_failed_task_end_leaves_nothing_behind(self):
        broken = task_end(1, 7, accumulables=[accumulable(5, 9)])
        broken["Task Info"]["Launch Time"] = "soon"
        store = EntityStore()
        ingestor = EventIngestor(store)
        ingestor.ingest([broken])

        self.assertEqual(store.tasks, [])
        self.assertEqual(store.task_stage_accums, [])
        self.assertEqual(store.task_keys, set())
        self.assertEqual(ingestor.stats['failed_events'], 1)

    def test_job_end_without_start_is_recorded_but_unmatched(self):
        store = ingest_events([job_end(9, 100)])
        self.assertEqual(list(store.jobs), [])
        self.assertEqual(store.job_ends[9].job_result, 'JobSucceeded')


def test_accepts_already_parsed_events():
    parser = SparkEventParser()
    events = list(parser.parse_records(profile_app_events()))
    store = ingest_events(events)

    assert len(store.tasks) == 5
    assert store.other_events[0].Event == 'SparkListenerUnpersistRDD'


@pytest.mark.parametrize("spark_properties, expected", [
    ({"spark.plugins": "com.nvidia.spark.SQLPlugin"}, True),
    ({"spark.plugins": "com.nvidia.spark.SQLPlugin", "spark.rapids.sql.enabled": "false"}, False),
    ({"spark.plugins": "com.nvidia.spark.SQLPlugin", "spark.rapids.sql.enabled": "TRUE"}, True),
    ({"spark.master": "yarn"}, False),
])
def test_accelerated_mode_from_environment(spark_properties, expected):
    store = ingest_events([environment_update(spark=spark_properties)])
    assert store.accelerated_mode is expected


def test_sql_plan_is_replaced_by_adaptive_update():
    store = ingest_events([
        sql_start(0, 10, plan_node("SortMergeJoin")),
        sql_adaptive_update(0, plan_node("BroadcastHashJoin"), plan_description="adaptive"),
        driver_accum_updates(0, [[3, 42], [4, 7]]),
    ])
    assert store.sql_plans[0].nodeName == "BroadcastHashJoin"
    assert store.physical_plan_descriptions[0] == "adaptive"
    assert [(accum.accumulator_id, accum.value) for accum in store.driver_accums] == [(3, 42), (4, 7)]


def test_block_manager_and_resource_profile_fields():
    store = ingest_events([block_manager_added('7', 30, max_mem=512), resource_profile(1, cores=2, memory=2048)])

    assert store.block_managers['7'].max_mem == 512
    assert store.block_managers['7'].max_off_heap_mem == 0
    assert store.resource_profiles[1].exec_mem == 2048
    assert store.resource_profiles[1].task_cpu == 1
    assert store.resource_profiles[1].exec_gpu is None
