"""Quarry source monitoring."""

from quarry.monitor.monitor import CheckResult, SourceMonitor

__all__ = ["CheckResult", "SourceMonitor"]
