"""
Spark Event Profiler - analysis sessions and command line entry point

Usage:
    spark-event-profiler app-1.inprogress
    spark-event-profiler --mode qualification logs/app-1 logs/app-2.gz --output results/
    spark-event-profiler --generate-dot --num-output-rows 50 s3://bucket/eventlogs/app-3
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Iterable, List, Optional, Union
import argparse
import logging
import sys

from tqdm import tqdm

from spark_event_profiler.collect_information import CollectInformation
from spark_event_profiler.config import ProfilerConfig
from spark_event_profiler.correlator import Correlator
from spark_event_profiler.health_check import HealthCheck
from spark_event_profiler.ingestor import EventIngestor
from spark_event_profiler.metrics_engine import MetricsEngine
from spark_event_profiler.parser import SparkEventParser
from spark_event_profiler.plan_analyzer import PlanAnalyzer
from spark_event_profiler.qualification import Qualification
from spark_event_profiler.report_generator import write_profiling_report, write_qualification_report
from spark_event_profiler.store import EntityStore

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ApplicationInfo:
    """
    Analysis session of one application.

    Runs parse, ingest, correlate and plan analysis once, then exposes the
    read-only query objects over the finalized store.

    Args:
        event_source: event log path (local, S3, compressed) or an iterable of
                      event dictionaries / SparkEvent models
        index: caller-assigned application index used to union results
        config: profiler settings
    """

    def __init__(self, event_source: Union[str, Iterable[Any]], index: int = 1,
                 config: Optional[ProfilerConfig] = None):
        self.index = index
        self.config = config or ProfilerConfig()
        self.source = event_source if isinstance(event_source, str) else ''
        self.store = EntityStore(app_index=index, source=self.source)
        self.parse_stats: Dict[str, Any] = {}
        self.ingest_stats: Dict[str, Any] = {}

        self._process(event_source)

    def _process(self, event_source):
        ingestor = EventIngestor(self.store, self.config)
        if isinstance(event_source, str):
            parser = SparkEventParser(strict_mode=self.config.strict_mode)
            ingestor.ingest(parser.parse(event_source, show_progress=self.config.show_progress))
        else:
            # raw dictionaries are validated by the ingestor's own parser
            parser = ingestor.parser
            ingestor.ingest(event_source)
        self.parse_stats = parser.get_statistics()
        self.ingest_stats = dict(ingestor.stats)

        Correlator(self.store).correlate()
        PlanAnalyzer(self.store, self.config).analyze()
        self.store.finalize()
        logger.info(f"Application {self.index} ({self.app_id}) ready: {self.store.summary()}")

    @property
    def app_id(self) -> str:
        return self.store.app_id

    @property
    def metrics(self) -> MetricsEngine:
        return MetricsEngine(self.store)

    @property
    def health(self) -> HealthCheck:
        return HealthCheck(self.store, self.config)

    @property
    def information(self) -> CollectInformation:
        return CollectInformation(self.store, self.config)

    @property
    def qualification(self) -> Qualification:
        return Qualification(self.store)


def analyze_event_logs(sources: List[Union[str, Iterable[Any]]],
                       config: Optional[ProfilerConfig] = None) -> Dict[str, Any]:
    """
    Analyze several applications, each in its own session.

    Application indexes follow the order of ``sources`` starting at 1. A
    failure in one application is logged and recorded, the others still run.

    Returns:
        {'applications': [ApplicationInfo, ...] in index order,
         'errors': {index: {'source': ..., 'error': ...}}}
    """
    config = config or ProfilerConfig()
    applications: Dict[int, ApplicationInfo] = {}
    errors: Dict[int, Dict[str, str]] = {}

    def run(index, source):
        return ApplicationInfo(source, index=index, config=config)

    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        futures = {
            executor.submit(run, index, source): (index, source)
            for index, source in enumerate(sources, start=1)
        }
        completed = as_completed(futures)
        if config.show_progress:
            completed = tqdm(completed, total=len(futures), desc="Analyzing applications")

        for future in completed:
            index, source = futures[future]
            label = source if isinstance(source, str) else f"application {index}"
            try:
                applications[index] = future.result()
            except Exception as e:
                logger.exception(f"Failed to analyze {label}")
                errors[index] = {'source': label, 'error': str(e)}

    return {
        'applications': [applications[index] for index in sorted(applications)],
        'errors': errors,
    }


# ============================================================================
# COMMAND LINE
# ============================================================================

def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='spark-event-profiler',
        description='Profile Spark event logs or score them for accelerated execution')
    parser.add_argument('event_logs', nargs='+', help='Spark event log files (local, S3, compressed)')
    parser.add_argument('--mode', choices=['profiling', 'qualification'], default='profiling',
                        help='Report to produce (default: profiling)')
    parser.add_argument('--output', default='output', help='Output directory for results')
    parser.add_argument('--num-output-rows', type=int, default=1000,
                        help='Rows printed per table in the text report')
    parser.add_argument('--generate-dot', action='store_true',
                        help='Write a DOT graph per SQL execution plan')
    parser.add_argument('--max-workers', type=int, default=1,
                        help='Applications analyzed in parallel')
    parser.add_argument('--strict', action='store_true',
                        help='Stop on the first malformed event instead of skipping it')
    parser.add_argument('--progress', action='store_true', help='Show progress bars')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    config = ProfilerConfig(
        num_output_rows=args.num_output_rows,
        strict_mode=args.strict,
        show_progress=args.progress,
        generate_dot=args.generate_dot,
        max_workers=args.max_workers,
        output_dir=args.output,
    )

    print("=" * 80)
    print(f"SPARK EVENT PROFILER - {args.mode.upper()}")
    print("=" * 80)

    result = analyze_event_logs(args.event_logs, config)
    applications = result['applications']
    print(f"\nAnalyzed {len(applications)} of {len(args.event_logs)} application(s)")
    for index, error in sorted(result['errors'].items()):
        print(f"   Application {index} failed: {error['source']}: {error['error']}", file=sys.stderr)

    if not applications:
        print("No application could be analyzed", file=sys.stderr)
        return 1

    if args.mode == 'qualification':
        paths = write_qualification_report(applications, config)
    else:
        paths = write_profiling_report(applications, config)

    for path in paths:
        print(f"   Wrote {path}")
    return 1 if result['errors'] else 0


if __name__ == '__main__':
    sys.exit(main())
