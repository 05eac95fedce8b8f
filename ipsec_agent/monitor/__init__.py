"""
SA Monitor Module
"""

from .sa_monitor import ReconcileResult, SAMonitor, build_hosts_map, child_sa_name

__all__ = ["ReconcileResult", "SAMonitor", "build_hosts_map", "child_sa_name"]
