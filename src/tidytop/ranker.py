"""Top-process view over the latest snapshot."""

from tidytop.models import ProcessSample, ResourceSnapshot


def rank(snapshot: ResourceSnapshot | None, limit: int) -> list[ProcessSample]:
    """Processes sorted by CPU% descending, memory breaking ties, truncated to ``limit``."""
    if snapshot is None or limit <= 0:
        return []
    ordered = sorted(
        snapshot.processes,
        key=lambda p: (p.cpu_percent, p.memory_rss),
        reverse=True,
    )
    return ordered[:limit]
