"""
synapse-orchestrator — integration test package

File: tests/integration/__init__.py
Last updated: 2026-10-19

Purpose
- Test package marker file for tests that spawn git and shell subprocesses.

Functional requirements
- Must not import heavy modules at import time; keep test collection fast.
- Must not trigger worker CLI calls or network access.
"""
