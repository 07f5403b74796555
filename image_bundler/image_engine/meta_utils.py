def to_mtime_ms_from_stat(stat_result) -> int:
    """Epoch milliseconds of an os.stat_result, preferring the ns field."""
    ns = getattr(stat_result, "st_mtime_ns", None)
    if ns is not None:
        return int(ns) // 1_000_000
    return round(float(stat_result.st_mtime) * 1000.0)
