"""Order sync and SLA compliance pipeline for the multi-brand analytics store."""

from typing import Any

__all__ = ["run_sync", "validate", "cleanup"]


def __getattr__(name: str) -> Any:
    if name == "run_sync":
        from sla_sync.sync.engine import run_sync as _run_sync

        return _run_sync
    if name == "validate":
        from sla_sync.integrity.validator import validate as _validate

        return _validate
    if name == "cleanup":
        from sla_sync.integrity.validator import cleanup as _cleanup

        return _cleanup
    raise AttributeError(name)
