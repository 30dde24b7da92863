"""
Database module for local operator state.

Exports:
    StateDB: Async context manager implementing the cluster, secret and
        workload stores on SQLite
"""

from escluster_core.db.state import StateDB

__all__ = ["StateDB"]
