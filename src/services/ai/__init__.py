"""Grounds generation: provider adapters, prompts and the orchestrator."""

from .orchestrator import GenerationOrchestrator
from .providers import AgentProvider, MockProvider


__all__ = [
    "AgentProvider",
    "GenerationOrchestrator",
    "MockProvider",
]
