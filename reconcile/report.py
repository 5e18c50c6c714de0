"""Result aggregation: merges per-platform results into one report."""

from __future__ import annotations

from typing import Iterable

from reconcile.models import SyncReport, SyncResult


def aggregate(results: Iterable[SyncResult]) -> SyncReport:
    """Overall success only if every platform succeeded.

    Any failed platform turns the report into a partial success that keeps
    the full per-platform breakdown (HTTP 207 at the boundary).
    """
    by_platform = {r.platform: r for r in results}
    failed = [name for name, r in by_platform.items() if not r.success]
    success = not failed
    return SyncReport(
        success=success,
        partial_success=not success,
        results=by_platform,
        failed_platforms=failed,
    )
