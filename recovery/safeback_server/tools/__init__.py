"""
Operator tools for SafeBack.
"""

from .snapshot_cli import SnapshotCLI

__all__ = ["SnapshotCLI"]
