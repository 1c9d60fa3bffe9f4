"""
synapse-orchestrator — domain model.

File: src/synapse_orchestrator/domain/__init__.py
Last updated: 2026-10-19

Purpose
- Cycle, phase, lock, and artifact records; identifiers; structured error codes.

Functional requirements
- No I/O. Models validate on construction and serialize canonically.
"""
