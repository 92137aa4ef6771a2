"""
Unit tests for the Spark event log parser.
"""
import json
import os
import pytest
from spark_event_profiler.parser import SparkEventParser, parse_event_log
from spark_event_profiler.models import (
    SparkEvent,
    SparkListenerLogStart,
    SparkListenerApplicationStart,
    SparkListenerJobStart,
    SparkListenerTaskEnd,
    SparkListenerSQLExecutionStart,
    SparkListenerSQLExecutionEnd,
    SparkListenerApplicationEnd,
)
from tests.sample_events import app_start, job_start, sql_start, plan_node

SAMPLE_LOGS_DIR = os.path.join(os.path.dirname(__file__), 'sample_logs')


@pytest.fixture
def ndjson_log_path():
    return os.path.join(SAMPLE_LOGS_DIR, 'sample_log.ndjson')


@pytest.fixture
def gzipped_ndjson_log_path():
    return os.path.join(SAMPLE_LOGS_DIR, 'sample_log.ndjson.gz')


def test_parse_ndjson_log(ndjson_log_path):
    """Malformed lines are skipped, everything else is typed."""
    parser = SparkEventParser()
    events = list(parser.parse(ndjson_log_path))

    assert len(events) == 12
    assert isinstance(events[0], SparkListenerLogStart)
    assert events[0].SparkVersion == "3.1.1"
    assert isinstance(events[1], SparkListenerApplicationStart)
    assert events[1].AppName == "sample-app"
    assert isinstance(events[3], SparkListenerSQLExecutionStart)
    assert isinstance(events[6], SparkListenerTaskEnd)
    assert isinstance(events[9], SparkListenerSQLExecutionEnd)
    assert isinstance(events[-1], SparkListenerApplicationEnd)

    stats = parser.get_statistics()
    assert stats['total_events'] == 13
    assert stats['parsed_events'] == 12
    assert stats['failed_events'] == 1


def test_parse_gzipped_ndjson_log(gzipped_ndjson_log_path):
    events = list(parse_event_log(gzipped_ndjson_log_path))
    assert len(events) == 12
    assert isinstance(events[4], SparkListenerJobStart)
    assert events[4].JobID == 0


def test_parse_json_array_log(tmp_path):
    path = tmp_path / 'array_log.json'
    path.write_text(json.dumps([app_start(5), job_start(0, [0], 10)]))

    events = list(parse_event_log(str(path)))
    assert [type(event) for event in events] == [SparkListenerApplicationStart, SparkListenerJobStart]


def test_strict_mode_raises_on_malformed_line(ndjson_log_path):
    with pytest.raises(json.JSONDecodeError):
        list(parse_event_log(ndjson_log_path, strict_mode=True))


def test_unknown_event_kind_is_kept_as_generic_event():
    parser = SparkEventParser()
    event = parser.parse_event({"Event": "SparkListenerUnpersistRDD", "RDD ID": 4})

    assert type(event) is SparkEvent
    assert event.Event == "SparkListenerUnpersistRDD"


def test_sql_events_match_by_qualified_and_short_name():
    parser = SparkEventParser()
    qualified = parser.parse_event(sql_start(3, 100, plan_node("Project")))
    short = dict(sql_start(4, 100, plan_node("Project")), Event="SparkListenerSQLExecutionStart")

    assert isinstance(qualified, SparkListenerSQLExecutionStart)
    assert isinstance(parser.parse_event(short), SparkListenerSQLExecutionStart)
    assert qualified.sparkPlanInfo.nodeName == "Project"


def test_event_without_kind_or_with_bad_fields_is_skipped():
    parser = SparkEventParser()

    assert parser.parse_event({"Job ID": 1}) is None
    assert parser.parse_event({"Event": "SparkListenerJobStart", "Job ID": "not a number"}) is None
    assert parser.get_statistics()['failed_events'] == 2


def test_event_without_kind_raises_in_strict_mode():
    parser = SparkEventParser(strict_mode=True)
    with pytest.raises(ValueError):
        parser.parse_event({"Job ID": 1})
