"""
synapse-orchestrator — package root.

File: src/synapse_orchestrator/__init__.py
Last updated: 2026-10-19

Purpose
- Coordinate multi-phase code-change cycles (frontend, backend, frontend tweak)
  executed by external worker CLIs against a local git repository.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
