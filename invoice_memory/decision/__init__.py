"""
Decision Package

Confidence-based decision making: risk assessment, the decision table,
reasoning and recommended follow-up actions.

Usage:
    from invoice_memory.decision import DecisionEngine, DecisionContext, DecisionType

    engine = DecisionEngine(confidence_manager)
    decision = engine.make_decision(DecisionContext(invoice_id='INV-1', confidence=0.92))

    if decision.decision_type == DecisionType.AUTO_APPROVE:
        # Process automatically
        pass
    elif decision.decision_type.needs_human:
        # Route to a reviewer
        pass
"""

from .decision_engine import (
    DecisionEngine,
    DecisionContext,
    Decision,
    DecisionType,
    RISK_CONFIDENCE_FACTORS,
)
from .risk import (
    RiskAssessment,
    RiskFactor,
    RiskType,
    assess_risk,
    risk_level_for,
)
from .actions import (
    RecommendedAction,
    ActionType,
    ActionPriority,
)

__all__ = [
    'DecisionEngine',
    'DecisionContext',
    'Decision',
    'DecisionType',
    'RISK_CONFIDENCE_FACTORS',
    'RiskAssessment',
    'RiskFactor',
    'RiskType',
    'assess_risk',
    'risk_level_for',
    'RecommendedAction',
    'ActionType',
    'ActionPriority',
]
