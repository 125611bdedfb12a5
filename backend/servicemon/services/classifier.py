"""Status classifier - maps a raw probe outcome to up/degraded/down."""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..schemas.monitor import ServiceMonitor
from .checker import ProbeOutcome

logger = logging.getLogger(__name__)

UP = "up"
DEGRADED = "degraded"
DOWN = "down"


@dataclass
class CheckResult:
    """Classified result of one probe cycle."""
    status: str  # up, down, degraded
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None


def parse_status_range(pattern: str) -> Optional[Tuple[int, int]]:
    """Parse "301" or "200-299" into an inclusive (start, end) pair.

    Returns None for anything malformed.
    """
    text = pattern.strip()
    try:
        if "-" in text:
            start_text, end_text = text.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = end = int(text)
    except ValueError:
        return None
    if start > end:
        return None
    return start, end


def is_status_code_expected(status_code: int, expected_codes: Iterable[str]) -> bool:
    """True if the code falls in any of the expected ranges.

    Malformed ranges never match, so a broken configuration pushes toward down.
    """
    for pattern in expected_codes:
        bounds = parse_status_range(pattern)
        if bounds is None:
            logger.warning(f"Ignoring malformed status code range: {pattern!r}")
            continue
        if bounds[0] <= status_code <= bounds[1]:
            return True
    return False


def classify(
    outcome: ProbeOutcome,
    expected_codes: List[str],
    degraded_threshold_ms: int,
) -> str:
    """Classify a probe outcome. Pure: same inputs, same status."""
    if outcome.connect_failed:
        return DOWN
    if outcome.status_code is not None and not is_status_code_expected(outcome.status_code, expected_codes):
        return DOWN
    if outcome.response_time_ms is not None and outcome.response_time_ms > degraded_threshold_ms:
        return DEGRADED
    return UP


def build_check_result(outcome: ProbeOutcome, monitor: ServiceMonitor) -> CheckResult:
    """Classify an outcome against a monitor's configuration."""
    status = classify(outcome, monitor.expected_status_codes, monitor.degraded_threshold_ms)

    error_message = outcome.error_message
    if status == DOWN and error_message is None and outcome.status_code is not None:
        error_message = f"Unexpected status code: {outcome.status_code}"

    return CheckResult(
        status=status,
        response_time_ms=None if outcome.connect_failed else outcome.response_time_ms,
        status_code=outcome.status_code,
        error_message=error_message,
    )
