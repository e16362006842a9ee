"""
Risk Assessment

Collects severity-scored risk factors for an invoice and buckets them into
an overall risk level.

Risk factors:
- FINANCIAL: amount above the high-value threshold,
  severity min(1, amount / (2 * threshold))
- OPERATIONAL: processing confidence below 0.5, severity (0.5 - c) * 2
- OPERATIONAL: known vendor with no applied memories, severity 0.4
- COMPLIANCE: ERROR/CRITICAL validation issues, severity min(1, n * 0.4)
- TECHNICAL: applied memories below 0.6 confidence, severity = their share

Risk level comes from max(max severity, mean severity):
    >= 0.8 VERY_HIGH, >= 0.6 HIGH, >= 0.4 MEDIUM, >= 0.2 LOW, else VERY_LOW
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..memory.types import Memory, RiskLevel
from ..validation.issues import ValidationIssue, blocking_issues


class RiskType(Enum):
    FINANCIAL = 'financial'
    OPERATIONAL = 'operational'
    COMPLIANCE = 'compliance'
    TECHNICAL = 'technical'
    REPUTATIONAL = 'reputational'


@dataclass(frozen=True)
class RiskFactor:
    risk_type: RiskType
    severity: float             # 0..1
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'risk_type': self.risk_type.value,
            'severity': round(self.severity, 4),
            'description': self.description,
        }


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    risk_factors: Tuple[RiskFactor, ...] = ()
    mitigation_strategies: Tuple[str, ...] = ()

    @property
    def max_severity(self) -> float:
        return max((f.severity for f in self.risk_factors), default=0.0)

    def factors_of(self, risk_type: RiskType) -> List[RiskFactor]:
        return [f for f in self.risk_factors if f.risk_type == risk_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'risk_level': self.risk_level.value,
            'risk_factors': [f.to_dict() for f in self.risk_factors],
            'mitigation_strategies': list(self.mitigation_strategies),
        }


MITIGATION_STRATEGIES: Dict[RiskType, Tuple[str, ...]] = {
    RiskType.FINANCIAL: (
        'Implement additional approval workflow for high-value invoices',
        'Require secondary validation for amounts above threshold',
    ),
    RiskType.OPERATIONAL: (
        'Increase confidence threshold for unfamiliar patterns',
        'Implement gradual learning approach for new vendors',
    ),
    RiskType.COMPLIANCE: (
        'Ensure all validation rules are properly applied',
        'Maintain detailed audit trail for compliance review',
    ),
    RiskType.TECHNICAL: (
        'Review and update low-confidence memory patterns',
        'Implement memory quality monitoring and cleanup',
    ),
    RiskType.REPUTATIONAL: (
        'Implement conservative processing for sensitive vendors',
        'Ensure proper escalation for relationship-critical invoices',
    ),
}

LOW_CONFIDENCE_RISK_LEVEL = 0.5
LOW_CONFIDENCE_MEMORY_LEVEL = 0.6
NEW_VENDOR_SEVERITY = 0.4


def risk_level_for(severity: float) -> RiskLevel:
    if severity >= 0.8:
        return RiskLevel.VERY_HIGH
    if severity >= 0.6:
        return RiskLevel.HIGH
    if severity >= 0.4:
        return RiskLevel.MEDIUM
    if severity >= 0.2:
        return RiskLevel.LOW
    return RiskLevel.VERY_LOW


def mitigation_strategies_for(factors: Sequence[RiskFactor]) -> Tuple[str, ...]:
    """Mitigations per risk type present, de-duplicated in first-seen order."""
    strategies: List[str] = []
    for factor in factors:
        for strategy in MITIGATION_STRATEGIES[factor.risk_type]:
            if strategy not in strategies:
                strategies.append(strategy)
    return tuple(strategies)


def assess_risk(
    confidence: float,
    invoice_amount: float,
    applied_memories: Sequence[Memory],
    validation_issues: Sequence[ValidationIssue],
    high_value_threshold: float,
    vendor_id: Optional[str] = None,
    currency: Optional[str] = None,
) -> RiskAssessment:
    """
    Score the risk of processing an invoice.

    Args:
        confidence: Overall processing confidence
        invoice_amount: Invoice total
        applied_memories: Memories applied to this invoice
        validation_issues: Issues reported against the invoice
        high_value_threshold: Amount above which the invoice counts as high value
        vendor_id: Vendor of the invoice, if known
        currency: Currency code used in descriptions

    Returns:
        RiskAssessment with level, factors and mitigations
    """
    factors: List[RiskFactor] = []

    if invoice_amount > high_value_threshold:
        amount_text = f"{invoice_amount} {currency}" if currency else f"{invoice_amount}"
        factors.append(RiskFactor(
            risk_type=RiskType.FINANCIAL,
            severity=min(1.0, invoice_amount / (high_value_threshold * 2)),
            description=f"High-value invoice: {amount_text}",
        ))

    if confidence < LOW_CONFIDENCE_RISK_LEVEL:
        factors.append(RiskFactor(
            risk_type=RiskType.OPERATIONAL,
            severity=(LOW_CONFIDENCE_RISK_LEVEL - confidence) * 2,
            description=f"Low processing confidence: {confidence * 100:.1f}%",
        ))

    if vendor_id and not applied_memories:
        factors.append(RiskFactor(
            risk_type=RiskType.OPERATIONAL,
            severity=NEW_VENDOR_SEVERITY,
            description='New or unfamiliar vendor with limited memory history',
        ))

    blocking = blocking_issues(validation_issues)
    if blocking:
        factors.append(RiskFactor(
            risk_type=RiskType.COMPLIANCE,
            severity=min(1.0, len(blocking) * 0.4),
            description=f"{len(blocking)} critical validation issues detected",
        ))

    weak = [m for m in applied_memories if m.confidence < LOW_CONFIDENCE_MEMORY_LEVEL]
    if weak:
        factors.append(RiskFactor(
            risk_type=RiskType.TECHNICAL,
            severity=len(weak) / len(applied_memories),
            description=f"{len(weak)} low-confidence memories applied",
        ))

    if factors:
        max_severity = max(f.severity for f in factors)
        mean_severity = sum(f.severity for f in factors) / len(factors)
        effective = max(max_severity, mean_severity)
    else:
        effective = 0.0

    return RiskAssessment(
        risk_level=risk_level_for(effective),
        risk_factors=tuple(factors),
        mitigation_strategies=mitigation_strategies_for(factors),
    )
