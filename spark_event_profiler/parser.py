"""
Spark Event Log Parser

Reads Spark event logs and validates each line into a typed event model.
Supports NDJSON (what Spark writes) and JSON arrays, local files and S3 paths,
with transparent decompression through smart_open.
"""

import json
import logging
from typing import Iterable, Iterator, Dict, Any, Optional
from smart_open import open
from tqdm import tqdm

from spark_event_profiler.models import EVENT_TYPE_MAP, SparkEvent, short_event_name

logger = logging.getLogger(__name__)


class SparkEventParser:
    """
    Parser for Spark event logs.

    Unknown event kinds come back as plain SparkEvent objects so the caller
    can keep them. Known kinds that do not match their schema are logged and
    dropped.
    """

    def __init__(self, strict_mode: bool = False):
        """
        Initialize the parser.

        Args:
            strict_mode: If True, raises exceptions on parsing errors.
                        If False, logs warnings and continues.
        """
        self.strict_mode = strict_mode
        self.reset_statistics()

    def parse(self, file_path: str, show_progress: bool = False) -> Iterator[SparkEvent]:
        """
        Parse a Spark event log file.

        Args:
            file_path: Path to the event log (local or S3, optionally compressed)
            show_progress: Whether to show progress bar

        Yields:
            Parsed SparkEvent objects

        Example:
            >>> parser = SparkEventParser()
            >>> for event in parser.parse('s3://bucket/eventlogs/app-1.gz'):
            ...     print(event.Event)
        """
        logger.info(f"Starting to parse: {file_path}")

        with open(file_path, 'rt', encoding='utf-8') as f:
            # Detect format by reading first character
            first_char = f.read(1)
            f.seek(0)

            if first_char == '[':
                yield from self._parse_json_array(f, show_progress)
            else:
                yield from self._parse_ndjson(f, show_progress)

        logger.info(f"Parsing complete: {self.stats}")

    def parse_records(self, records: Iterable[Dict[str, Any]]) -> Iterator[SparkEvent]:
        """Validate already-decoded event dictionaries, skipping bad ones."""
        for event_dict in records:
            event = self.parse_event(event_dict)
            if event is not None:
                yield event

    def _parse_json_array(self, file_handle, show_progress: bool) -> Iterator[SparkEvent]:
        """Parse JSON array format."""
        try:
            data = json.load(file_handle)
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error: {e}")
            if self.strict_mode:
                raise
            return

        iterator = tqdm(data, desc="Parsing events") if show_progress else data
        yield from self.parse_records(iterator)

    def _parse_ndjson(self, file_handle, show_progress: bool) -> Iterator[SparkEvent]:
        """Parse NDJSON (newline-delimited JSON) format."""
        iterator = tqdm(file_handle, desc="Parsing events", unit=" lines") if show_progress else file_handle

        for line in iterator:
            line = line.strip()
            if not line:
                continue

            try:
                event_dict = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed line: {line[:100]}... Error: {e}")
                self.stats['total_events'] += 1
                self.stats['failed_events'] += 1
                if self.strict_mode:
                    raise
                continue

            event = self.parse_event(event_dict)
            if event is not None:
                yield event

    def parse_event(self, event_dict: Any) -> Optional[SparkEvent]:
        """
        Parse a single event dictionary into a Pydantic model.

        Args:
            event_dict: Raw event dictionary

        Returns:
            Parsed SparkEvent or None if parsing fails
        """
        self.stats['total_events'] += 1

        if not isinstance(event_dict, dict) or not event_dict.get('Event'):
            logger.warning(f"Event missing 'Event' field: {str(event_dict)[:100]}")
            self.stats['failed_events'] += 1
            if self.strict_mode:
                raise ValueError("Event record without an 'Event' field")
            return None

        event_type = event_dict['Event']

        # Update event type statistics
        self.stats['event_type_counts'][event_type] = \
            self.stats['event_type_counts'].get(event_type, 0) + 1

        model_class = EVENT_TYPE_MAP.get(short_event_name(event_type), SparkEvent)

        try:
            event = model_class.model_validate(self._normalize_event_dict(event_dict))
        except Exception as e:
            logger.warning(f"Failed to parse {event_type}: {e}")
            self.stats['failed_events'] += 1
            if self.strict_mode:
                raise
            return None

        self.stats['parsed_events'] += 1
        return event

    def _normalize_event_dict(self, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize event dictionary for cross-version compatibility.

        Handles field name variations between Spark versions.
        """
        normalized = event_dict.copy()

        # Older logs wrote "Time" on some events
        if 'Time' in normalized and 'Timestamp' not in normalized:
            normalized['Timestamp'] = normalized['Time']

        # Handle task metrics structure variations
        if isinstance(normalized.get('Task Metrics'), dict):
            task_metrics = dict(normalized['Task Metrics'])
            for nested in ('Shuffle Read Metrics', 'Shuffle Write Metrics',
                           'Input Metrics', 'Output Metrics'):
                if not isinstance(task_metrics.get(nested), dict):
                    task_metrics[nested] = {}
            normalized['Task Metrics'] = task_metrics

        return normalized

    def get_statistics(self) -> Dict[str, Any]:
        """Get parsing statistics."""
        return self.stats.copy()

    def reset_statistics(self):
        """Reset parsing statistics."""
        self.stats = {
            'total_events': 0,
            'parsed_events': 0,
            'failed_events': 0,
            'event_type_counts': {}
        }


# ============================================================================
# CONVENIENCE FUNCTION
# ============================================================================

def parse_event_log(file_path: str, strict_mode: bool = False,
                    show_progress: bool = False) -> Iterator[SparkEvent]:
    """
    Parse a Spark event log file.

    Args:
        file_path: Path to the event log (local or S3)
        strict_mode: If True, raises exceptions on errors
        show_progress: Whether to show progress bar

    Yields:
        Parsed SparkEvent objects
    """
    parser = SparkEventParser(strict_mode=strict_mode)
    yield from parser.parse(file_path, show_progress=show_progress)
