"""
Confidence Package

Trust scoring for learned memories and the escalation threshold that
separates automatic processing from human review.

Usage:
    from invoice_memory.confidence import ConfidenceManager

    manager = ConfidenceManager(store)
    if manager.should_auto_apply(calc.final_confidence):
        ...
"""

from .confidence_manager import (
    ConfidenceManager,
    ConfidenceCalculation,
    ProcessingOutcome,
    ProcessingOutcomeType,
    HumanFeedback,
    PerformanceMetrics,
    MemoryMetrics,
    ReliabilityScore,
    ReliabilityFactor,
    ReliabilityFactorType,
    ReliabilityClassification,
    ThresholdAdjustment,
)

__all__ = [
    'ConfidenceManager',
    'ConfidenceCalculation',
    'ProcessingOutcome',
    'ProcessingOutcomeType',
    'HumanFeedback',
    'PerformanceMetrics',
    'MemoryMetrics',
    'ReliabilityScore',
    'ReliabilityFactor',
    'ReliabilityFactorType',
    'ReliabilityClassification',
    'ThresholdAdjustment',
]
