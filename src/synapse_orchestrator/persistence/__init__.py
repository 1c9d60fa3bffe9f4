"""
synapse-orchestrator — persistence layer.

File: src/synapse_orchestrator/persistence/__init__.py
Last updated: 2026-10-19

Purpose
- JSON cycle records under ``<repo_root>/.synapse`` and the per-cycle file lock.

Functional requirements
- Must support safe resume after crash and concurrent runner processes.
"""
