"""
End-to-end tests: event log on disk through every query, the multi-application
runner and the command line.
"""
import json
import os

import pytest

from spark_event_profiler.analyze import ApplicationInfo, analyze_event_logs, build_arg_parser, main
from spark_event_profiler.config import ProfilerConfig
from tests.sample_events import profile_app_events

SAMPLE_LOGS_DIR = os.path.join(os.path.dirname(__file__), 'sample_logs')
SAMPLE_LOG = os.path.join(SAMPLE_LOGS_DIR, 'sample_log.ndjson')
SAMPLE_LOG_GZ = os.path.join(SAMPLE_LOGS_DIR, 'sample_log.ndjson.gz')


def test_application_from_event_log_file():
    app = ApplicationInfo(SAMPLE_LOG)

    assert app.app_id == 'app-20210512-0007'
    assert app.store.source == SAMPLE_LOG
    assert app.parse_stats['failed_events'] == 1
    assert app.ingest_stats['other_events'] == 1
    assert app.store.application.duration == 500

    sql = app.metrics.sql_metrics().iloc[0]
    assert sql['numTasks'] == 1
    assert sql['executorRunTime'] == 55
    assert sql['executorCPUTime'] == 40

    metrics = app.information.sql_plan_metrics()
    assert list(metrics['max_value']) == [3]
    assert app.qualification.summary().iloc[0]['Score'] == 20.0


def test_compressed_log_gives_the_same_application():
    plain = ApplicationInfo(SAMPLE_LOG)
    compressed = ApplicationInfo(SAMPLE_LOG_GZ)
    assert compressed.store.summary() == plain.store.summary()


def test_one_failing_application_does_not_stop_the_others(tmp_path):
    missing = str(tmp_path / 'does-not-exist')
    result = analyze_event_logs([SAMPLE_LOG, missing, profile_app_events()],
                                ProfilerConfig(max_workers=2))

    applications = result['applications']
    assert [app.index for app in applications] == [1, 3]
    assert [app.app_id for app in applications] == ['app-20210512-0007', 'app-20210101-0001']
    assert list(result['errors']) == [2]
    assert result['errors'][2]['source'] == missing


def test_argument_defaults():
    args = build_arg_parser().parse_args(['app.log'])
    assert args.mode == 'profiling'
    assert args.output == 'output'
    assert args.num_output_rows == 1000
    assert args.max_workers == 1
    assert not args.generate_dot


def test_main_profiling(tmp_path):
    output = tmp_path / 'profile'
    code = main([SAMPLE_LOG, '--output', str(output), '--generate-dot'])

    assert code == 0
    assert (output / 'profiling_report.log').exists()
    assert (output / 'planDescriptions-app-20210512-0007').exists()
    assert (output / 'dot' / 'app-20210512-0007-query-0.dot').exists()
    report = (output / 'profiling_report.log').read_text()
    assert 'sample-app' in report


def test_main_qualification(tmp_path):
    output = tmp_path / 'qual'
    code = main(['--mode', 'qualification', '--output', str(output), SAMPLE_LOG])

    assert code == 0
    with open(output / 'qualification_summary.json') as f:
        records = json.load(f)
    assert records[0]['App ID'] == 'app-20210512-0007'
    assert records[0]['Score'] == 20.0
    assert (output / 'qualification_summary.csv').exists()


def test_main_reports_failures(tmp_path):
    assert main([str(tmp_path / 'missing'), '--output', str(tmp_path / 'out')]) == 1
    assert main([SAMPLE_LOG, str(tmp_path / 'missing'), '--output', str(tmp_path / 'out')]) == 1


@pytest.mark.parametrize("mode", ['profiling', 'qualification'])
def test_strict_mode_fails_on_malformed_line(tmp_path, mode):
    assert main(['--strict', '--mode', mode, '--output', str(tmp_path), SAMPLE_LOG]) == 1
