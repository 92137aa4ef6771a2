"""
Small helpers shared by the query modules.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import numpy as np
import pandas as pd

MB = 1024 * 1024


def round_half_up(value, digits: int = 1) -> Optional[float]:
    """Round like Spark SQL's round(): halves go away from zero."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return value
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def truncate(text: Optional[str], max_chars: int = 100) -> Optional[str]:
    """First ``max_chars`` characters of a free-text reason."""
    if text is None:
        return None
    return text[:max_chars]


def duration(start: Optional[int], end: Optional[int]) -> Optional[int]:
    """end - start when both sides are known."""
    if start is None or end is None:
        return None
    return end - start


def format_duration(ms: Optional[int]) -> str:
    """Format milliseconds the way the Spark UI does."""
    if ms is None:
        return ""
    if ms < 100:
        return f"{ms} ms"
    seconds = ms / 1000
    if seconds < 1:
        return f"{seconds:.1f} s"
    if seconds < 60:
        return f"{seconds:.0f} s"
    minutes = seconds / 60
    if minutes < 10:
        return f"{minutes:.1f} min"
    if minutes < 60:
        return f"{minutes:.0f} min"
    return f"{minutes / 60:.1f} h"


def executor_sort_key(executor_id: str):
    """Numeric executor ids first in numeric order, then the rest (e.g. "driver")."""
    try:
        return (0, int(executor_id), '')
    except (TypeError, ValueError):
        return (1, 0, str(executor_id))


def no_data(columns: List[str], message: str) -> pd.DataFrame:
    """Empty result table that still carries its columns and an explanation."""
    frame = pd.DataFrame(columns=columns)
    frame.attrs['message'] = message
    return frame


def is_no_data(frame: pd.DataFrame) -> bool:
    return frame.empty and 'message' in frame.attrs
