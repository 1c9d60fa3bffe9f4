"""
synapse-orchestrator — control plane.

File: src/synapse_orchestrator/control_plane/__init__.py
Last updated: 2026-10-19

Purpose
- Cycle/phase state machine, retry classification, the scheduler loop, and the
  programmatic service surface.

Functional requirements
- State transitions are pure functions; all I/O lives in ``runner`` and ``service``.
"""
