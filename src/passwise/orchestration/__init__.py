"""
Multi-Model Orchestration

Runs per-dimension agents, cross-validates them and refines the
consensus they reach.
"""

from .agents import AnalysisAgent, OracleAgent, ReviewContext, default_agents
from .consensus import ConsensusBuilder
from .cross_validator import CrossValidator
from .models import (
    ConsensusResult,
    Finding,
    MultiModelAnalysisResult,
    Recommendation,
    RefinedAnalysisResult,
    SpecializedAnalysis,
)
from .orchestrator import MultiModelOrchestrator

__all__ = [
    "AnalysisAgent",
    "OracleAgent",
    "ReviewContext",
    "default_agents",
    "ConsensusBuilder",
    "CrossValidator",
    "ConsensusResult",
    "Finding",
    "MultiModelAnalysisResult",
    "Recommendation",
    "RefinedAnalysisResult",
    "SpecializedAnalysis",
    "MultiModelOrchestrator",
]
