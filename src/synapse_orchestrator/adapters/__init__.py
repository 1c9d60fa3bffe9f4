"""
synapse-orchestrator — worker adapters.

File: src/synapse_orchestrator/adapters/__init__.py
Last updated: 2026-10-19

Purpose
- Map phase types onto the external worker that performs them.

Functional requirements
- BACKEND runs through codex exec; FRONTEND and FRONTEND_TWEAK run through Gemini.
"""

from __future__ import annotations

from synapse_orchestrator.adapters.base import AdapterContext, PhaseAdapter
from synapse_orchestrator.adapters.codex_exec import CodexExecAdapter
from synapse_orchestrator.adapters.gemini import GeminiAdapter
from synapse_orchestrator.domain.errors import ErrorCode, SynapseError
from synapse_orchestrator.domain.models import PhaseType


def adapter_for(phase_type: PhaseType | str) -> PhaseAdapter:
    try:
        resolved = PhaseType(phase_type)
    except ValueError:
        raise SynapseError(
            ErrorCode.INVALID_PHASE, "Unsupported phase type", {"type": str(phase_type)}
        ) from None
    if resolved is PhaseType.BACKEND:
        return CodexExecAdapter()
    return GeminiAdapter()


__all__ = [
    "AdapterContext",
    "CodexExecAdapter",
    "GeminiAdapter",
    "PhaseAdapter",
    "adapter_for",
]
