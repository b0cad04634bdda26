
_consecutive_failures: int = 0
_last_error: str = ""


def record_generation_outcome(success: bool, error: str = "") -> None:
    """Record outcome of a generation attempt (success or failure)."""
    global _consecutive_failures, _last_error
    if success:
        _consecutive_failures = 0
    else:
        _consecutive_failures += 1
        _last_error = error


def get_consecutive_failures() -> int:
    return _consecutive_failures


def get_last_error() -> str:
    return _last_error


def reset_metrics() -> None:
    """Clear all counters (use with caution)."""
    global _consecutive_failures, _last_error
    _consecutive_failures = 0
    _last_error = ""
