"""
SafeBack Test Suite.

This package contains:
- unit/: Unit tests (single component, temporary directories)
- integration/: Integration tests (full engine, scheduler, HTTP API)
"""
