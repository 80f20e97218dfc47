"""
SafeBack Server - point-in-time backup and recovery for workspace business data.

This package captures, previews and restores snapshots of everything a
workspace owns (workboard, billing linkage, booking catalogs, settings,
team chat metadata). Data domains are contributed by pluggable providers.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  Admin UI / │────▶│    HTTP     │────▶│ SnapshotService │
    │  Scheduler  │     │    API      │     │  (admin checks) │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                        ┌────────────────────────────┼───────────────────┐
                        │                            │                   │
                        ▼                            ▼                   ▼
                   ┌─────────┐               ┌──────────────┐      ┌───────────┐
                   │ Capture │──providers──▶ │ Preview /    │      │ Retention │
                   │ Engine  │               │ Restore      │      │ Enforcer  │
                   └────┬────┘               └──────┬───────┘      └─────┬─────┘
                        │                           │                    │
                        ▼                           ▼                    ▼
                   ┌─────────┐               ┌──────────────┐      ┌───────────┐
                   │ Blob    │               │ Workspace    │      │ Control   │
                   │ Storage │               │ SQLite files │      │ SQLite    │
                   └─────────┘               └──────────────┘      └───────────┘

Invariants:
    - Capture and restore of one workspace never run concurrently (advisory lock)
    - A restore is preceded by a pre_restore safety snapshot
    - A restore replaces every domain present in the snapshot in one transaction
    - Externalized payloads carry a SHA-256 checksum that is verified on read
    - Audit log entries are append-only

How to change safely:
    - Add new data domains as providers, never by editing the engine
    - Bump a provider's version when its slice format changes
    - Keep restore able to read documents written by older engine versions

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
