"""
Decision Engine

Turns processing confidence, risk and business policy into one of five
processing decisions, with reasoning a reviewer can audit.

Decision Types:
- AUTO_APPROVE: process without human involvement
- HUMAN_REVIEW_REQUIRED: a reviewer checks the invoice
- ESCALATE_TO_EXPERT: very high risk, needs a domain expert
- REJECT_INVOICE: critical validation failure
- REQUEST_ADDITIONAL_INFO: confidence too low to do anything useful

Decision Table (first matching rule wins):
1. Any CRITICAL validation issue                      -> REJECT_INVOICE
2. confidence < rejection_threshold                   -> REQUEST_ADDITIONAL_INFO
3. risk VERY_HIGH and a factor with severity > 0.8    -> ESCALATE_TO_EXPERT
4. confidence >= auto_approval_threshold and
   risk <= risk_tolerance (MEDIUM)                    -> AUTO_APPROVE
5. conservative mode, no applied memories and
   confidence < auto_approval_threshold               -> HUMAN_REVIEW_REQUIRED
6. confidence >= escalation threshold                 -> AUTO_APPROVE, unless
   the invoice is high value with risk >= HIGH        -> HUMAN_REVIEW_REQUIRED
7. otherwise                                          -> HUMAN_REVIEW_REQUIRED

make_decision never raises: an internal failure yields a conservative
HUMAN_REVIEW_REQUIRED decision whose reasoning names the failure.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..audit import AuditOperation, AuditTrail, timed
from ..config import DecisionConfig
from ..confidence.confidence_manager import ConfidenceManager
from ..errors import MemoryValidationError
from ..memory.types import Memory, MemoryContext, QualityLevel, RiskLevel, clamp, require_unit_interval
from ..validation.issues import IssueSeverity, ValidationIssue, ValidationIssueType, count_by_severity
from .actions import (
    APPLY_ALL,
    EXPERT_REVIEW,
    HUMAN_REVIEW,
    REJECTION,
    VENDOR_CONTACT,
    ActionPriority,
    ActionType,
    RecommendedAction,
    memory_review_action,
    review_actions,
)
from .risk import RiskAssessment, assess_risk


class DecisionType(Enum):
    """Processing decisions for an invoice."""

    AUTO_APPROVE = 'auto_approve'
    HUMAN_REVIEW_REQUIRED = 'human_review_required'
    ESCALATE_TO_EXPERT = 'escalate_to_expert'
    REJECT_INVOICE = 'reject_invoice'
    REQUEST_ADDITIONAL_INFO = 'request_additional_info'

    @property
    def is_automated(self) -> bool:
        """Whether the invoice is processed without a person."""
        return self == DecisionType.AUTO_APPROVE

    @property
    def needs_human(self) -> bool:
        return self in (DecisionType.HUMAN_REVIEW_REQUIRED, DecisionType.ESCALATE_TO_EXPERT)

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        names = {
            DecisionType.AUTO_APPROVE: "✓ Auto-approve",
            DecisionType.HUMAN_REVIEW_REQUIRED: "⚠ Human review",
            DecisionType.ESCALATE_TO_EXPERT: "⚠ Escalate to expert",
            DecisionType.REJECT_INVOICE: "✗ Reject",
            DecisionType.REQUEST_ADDITIONAL_INFO: "? Request info",
        }
        return names.get(self, self.name)


# Decision confidence multipliers by risk level
RISK_CONFIDENCE_FACTORS = {
    RiskLevel.VERY_LOW: 1.10,
    RiskLevel.LOW: 1.05,
    RiskLevel.MEDIUM: 1.00,
    RiskLevel.HIGH: 0.90,
    RiskLevel.VERY_HIGH: 0.80,
}

ESCALATION_SEVERITY = 0.8
HIGH_SEVERITY = 0.7


@dataclass(frozen=True)
class DecisionContext:
    """Everything the engine needs to decide on one invoice."""
    invoice_id: str
    confidence: float
    memory_context: MemoryContext = field(default_factory=MemoryContext)
    applied_memories: Tuple[Memory, ...] = ()
    validation_issues: Tuple[ValidationIssue, ...] = ()
    invoice_amount: float = 0.0
    currency: Optional[str] = None

    def __post_init__(self):
        require_unit_interval(self.confidence, 'confidence')
        if isinstance(self.invoice_amount, bool) or not isinstance(self.invoice_amount, (int, float)) \
                or self.invoice_amount < 0:
            raise MemoryValidationError(
                f"invoice_amount must be a non-negative number, got {self.invoice_amount!r}",
                field_name='invoice_amount',
                value=self.invoice_amount,
            )

    @property
    def vendor_id(self) -> Optional[str]:
        return self.memory_context.vendor_id


@dataclass(frozen=True)
class Decision:
    """
    Final decision for an invoice.

    Always carries reasoning and at least one recommended action.
    """
    decision_type: DecisionType
    confidence: float
    reasoning: str
    recommended_actions: Tuple[RecommendedAction, ...]
    risk_assessment: RiskAssessment

    def __post_init__(self):
        if not self.reasoning:
            raise ValueError("Decision reasoning cannot be empty")
        if not self.recommended_actions:
            raise ValueError("Decision needs at least one recommended action")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'decision_type': self.decision_type.value,
            'confidence': round(self.confidence, 4),
            'reasoning': self.reasoning,
            'recommended_actions': [a.to_dict() for a in self.recommended_actions],
            'risk_assessment': self.risk_assessment.to_dict(),
        }


_CANONICAL_ACTIONS = {
    DecisionType.AUTO_APPROVE: APPLY_ALL,
    DecisionType.HUMAN_REVIEW_REQUIRED: HUMAN_REVIEW,
    DecisionType.ESCALATE_TO_EXPERT: EXPERT_REVIEW,
    DecisionType.REJECT_INVOICE: REJECTION,
    DecisionType.REQUEST_ADDITIONAL_INFO: VENDOR_CONTACT,
}


class DecisionEngine:
    """
    Decision engine for invoice processing.

    Usage:
        engine = DecisionEngine(confidence_manager)

        decision = engine.make_decision(DecisionContext(
            invoice_id='INV-2024-001',
            confidence=0.92,
            memory_context=context,
            applied_memories=tuple(recall.recalled),
            invoice_amount=1000.0,
        ))

        print(decision.decision_type.display_name)
        for action in decision.recommended_actions:
            print(f"  - {action.description}")
    """

    def __init__(self, confidence_manager: ConfidenceManager, config: Optional[DecisionConfig] = None):
        """
        Initialize decision engine.

        Args:
            confidence_manager: Source of the escalation threshold
            config: Decision configuration
        """
        self.confidence_manager = confidence_manager
        self.config = config or DecisionConfig()

    def make_decision(self, context: DecisionContext, trail: Optional[AuditTrail] = None) -> Decision:
        """
        Decide how to process an invoice.

        Never raises; failures produce a conservative human-review decision.
        """
        try:
            return self._decide(context, trail)
        except Exception as e:
            logger.exception(f"Decision failed for invoice {getattr(context, 'invoice_id', '?')}")
            return self._fallback_decision(context, e, trail)

    def assess_risk(self, context: DecisionContext) -> RiskAssessment:
        return assess_risk(
            confidence=context.confidence,
            invoice_amount=context.invoice_amount,
            applied_memories=context.applied_memories,
            validation_issues=context.validation_issues,
            high_value_threshold=self.config.high_value_invoice_threshold,
            vendor_id=context.vendor_id,
            currency=context.currency,
        )

    def determine_decision_type(
        self,
        confidence: float,
        escalation_threshold: float,
        risk: RiskAssessment,
        applied_memory_count: int,
        validation_issues: Sequence[ValidationIssue],
        invoice_amount: float,
    ) -> DecisionType:
        """Evaluate the decision table; first matching rule wins."""
        if any(issue.severity == IssueSeverity.CRITICAL for issue in validation_issues):
            return DecisionType.REJECT_INVOICE

        if confidence < self.config.rejection_threshold:
            return DecisionType.REQUEST_ADDITIONAL_INFO

        if risk.risk_level == RiskLevel.VERY_HIGH and \
                any(f.severity > ESCALATION_SEVERITY for f in risk.risk_factors):
            return DecisionType.ESCALATE_TO_EXPERT

        if confidence >= self.config.auto_approval_threshold and risk.risk_level <= self.config.risk_tolerance:
            return DecisionType.AUTO_APPROVE

        if self.config.conservative_mode_for_new_vendors and applied_memory_count == 0 \
                and confidence < self.config.auto_approval_threshold:
            return DecisionType.HUMAN_REVIEW_REQUIRED

        if confidence >= escalation_threshold:
            if invoice_amount > self.config.high_value_invoice_threshold and risk.risk_level >= RiskLevel.HIGH:
                return DecisionType.HUMAN_REVIEW_REQUIRED
            return DecisionType.AUTO_APPROVE

        return DecisionType.HUMAN_REVIEW_REQUIRED

    def calculate_decision_confidence(
        self,
        confidence: float,
        risk: RiskAssessment,
        validation_issues: Sequence[ValidationIssue],
    ) -> float:
        adjusted = confidence * RISK_CONFIDENCE_FACTORS[risk.risk_level]

        error_count = sum(1 for issue in validation_issues if issue.severity.is_blocking)
        if error_count > 0:
            adjusted *= max(0.5, 1 - error_count * 0.1)

        return clamp(adjusted)

    def generate_recommended_actions(
        self,
        context: DecisionContext,
        decision_type: DecisionType,
    ) -> List[RecommendedAction]:
        actions = [_CANONICAL_ACTIONS[decision_type]]
        if decision_type == DecisionType.HUMAN_REVIEW_REQUIRED:
            actions.extend(review_actions(context.validation_issues))
        actions.extend(memory_review_action(context.applied_memories))
        return actions

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decide(self, context: DecisionContext, trail: Optional[AuditTrail]) -> Decision:
        with timed() as elapsed:
            threshold = self.confidence_manager.get_escalation_threshold()
            risk = self.assess_risk(context)

            decision_type = self.determine_decision_type(
                confidence=context.confidence,
                escalation_threshold=threshold,
                risk=risk,
                applied_memory_count=len(context.applied_memories),
                validation_issues=context.validation_issues,
                invoice_amount=context.invoice_amount,
            )
            decision_confidence = self.calculate_decision_confidence(
                context.confidence, risk, context.validation_issues
            )
            reasoning = self._reasoning(context, decision_type, threshold, risk, decision_confidence)
            actions = self.generate_recommended_actions(context, decision_type)

        logger.info(
            f"Invoice {context.invoice_id}: {decision_type.value} "
            f"(confidence={decision_confidence:.3f}, risk={risk.risk_level.value})"
        )
        if trail is not None:
            trail.record(
                AuditOperation.DECISION_MAKING,
                'Confidence-based decision making',
                input={
                    'invoice_id': context.invoice_id,
                    'confidence': context.confidence,
                    'escalation_threshold': threshold,
                    'risk_level': risk.risk_level.value,
                    'applied_memories_count': len(context.applied_memories),
                },
                output={
                    'decision_type': decision_type.value,
                    'decision_confidence': decision_confidence,
                    'risk_level': risk.risk_level.value,
                    'recommended_actions_count': len(actions),
                },
                actor='DecisionEngine',
                duration_ms=elapsed(),
            )

        return Decision(
            decision_type=decision_type,
            confidence=decision_confidence,
            reasoning=reasoning,
            recommended_actions=tuple(actions),
            risk_assessment=risk,
        )

    def _fallback_decision(
        self,
        context: Any,
        error: Exception,
        trail: Optional[AuditTrail],
    ) -> Decision:
        failure = f"{type(error).__name__}: {error}"
        reasoning = (
            f"Decision: {DecisionType.HUMAN_REVIEW_REQUIRED.value}. "
            f"Automated decision failed ({failure}). "
            f"Routing to human review as a conservative fallback."
        )
        logger.warning(f"Falling back to human review: {failure}")

        if trail is not None:
            try:
                trail.record(
                    AuditOperation.ERROR_HANDLING,
                    'Decision fallback after internal failure',
                    input={'invoice_id': str(getattr(context, 'invoice_id', 'unknown'))},
                    output={'decision_type': DecisionType.HUMAN_REVIEW_REQUIRED.value, 'error': failure},
                    actor='DecisionEngine',
                )
            except Exception:
                logger.exception("Could not record fallback audit step")

        return Decision(
            decision_type=DecisionType.HUMAN_REVIEW_REQUIRED,
            confidence=0.0,
            reasoning=reasoning,
            recommended_actions=(RecommendedAction(
                action_type=ActionType.ESCALATE_ISSUE,
                priority=ActionPriority.HIGH,
                description='Escalate to human reviewer: automated decision failed',
                expected_outcome='Manual processing decision',
            ),),
            risk_assessment=RiskAssessment(risk_level=RiskLevel.HIGH),
        )

    def _reasoning(
        self,
        context: DecisionContext,
        decision_type: DecisionType,
        threshold: float,
        risk: RiskAssessment,
        decision_confidence: float,
    ) -> str:
        reasons: List[str] = []
        reasons.extend(self._confidence_reasons(context.confidence, threshold))
        reasons.extend(self._risk_reasons(risk))
        reasons.extend(self._memory_reasons(context))
        reasons.extend(self._validation_reasons(context.validation_issues))
        reasons.extend(self._rationale(context, decision_type, threshold, risk))

        reasons.append(f"Final decision confidence: {decision_confidence * 100:.1f}%")
        if risk.mitigation_strategies:
            reasons.append(f"{len(risk.mitigation_strategies)} risk mitigation strategies available")

        return f"Decision: {decision_type.value}. {'. '.join(reasons)}."

    @staticmethod
    def _confidence_reasons(confidence: float, threshold: float) -> List[str]:
        confidence_pct = f"{confidence * 100:.1f}%"
        threshold_pct = f"{threshold * 100:.1f}%"

        if confidence >= threshold:
            reasons = [f"Processing confidence {confidence_pct} meets escalation threshold {threshold_pct}"]
            if confidence >= 0.9:
                reasons.append('Very high confidence indicates reliable processing')
            elif confidence >= 0.8:
                reasons.append('High confidence supports automated processing')
            else:
                reasons.append('Moderate confidence above threshold but requires monitoring')
            return reasons

        reasons = [f"Processing confidence {confidence_pct} below escalation threshold {threshold_pct}"]
        gap = threshold - confidence
        if gap > 0.3:
            reasons.append('Significant confidence gap indicates high uncertainty')
        elif gap > 0.1:
            reasons.append('Moderate confidence gap suggests caution needed')
        else:
            reasons.append('Small confidence gap, borderline case requiring careful evaluation')
        return reasons

    @staticmethod
    def _risk_reasons(risk: RiskAssessment) -> List[str]:
        reasons = [f"Risk assessment: {risk.risk_level.value} with {len(risk.risk_factors)} factors identified"]
        if risk.risk_factors:
            categories = Counter(f.risk_type.value for f in risk.risk_factors)
            reasons.append('Risk categories: ' + ', '.join(f"{n} {t}" for t, n in categories.items()))

            severe = [f for f in risk.risk_factors if f.severity >= HIGH_SEVERITY]
            if severe:
                reasons.append(f"{len(severe)} high-severity risk factors require attention")
        return reasons

    @staticmethod
    def _memory_reasons(context: DecisionContext) -> List[str]:
        memories = context.applied_memories
        if not memories:
            reasons = ['No memories available for this vendor/pattern, using default processing logic']
            if context.vendor_id:
                reasons.append(f"New or unfamiliar vendor {context.vendor_id} requires conservative approach")
            return reasons

        average = sum(m.confidence for m in memories) / len(memories)
        reasons = [f"{len(memories)} memories applied with average confidence {average * 100:.1f}%"]

        proven = [m for m in memories if m.confidence >= 0.8 and m.usage_count >= 3 and m.success_rate >= 0.8]
        if proven:
            reasons.append(f"{len(proven)} high-quality memories with proven track record")

        untested = [m for m in memories if m.usage_count == 0]
        if untested:
            reasons.append(f"{len(untested)} untested memories applied, increased monitoring recommended")

        types = Counter(m.type.value for m in memories)
        reasons.append('Memory types: ' + ', '.join(f"{n} {t}" for t, n in types.items()))
        return reasons

    @staticmethod
    def _validation_reasons(issues: Sequence[ValidationIssue]) -> List[str]:
        if not issues:
            return ['All validation checks passed successfully']

        counts = count_by_severity(issues)
        critical = counts[IssueSeverity.CRITICAL]
        errors = counts[IssueSeverity.ERROR]
        warnings = counts[IssueSeverity.WARNING]
        infos = counts[IssueSeverity.INFO]

        summary = []
        if critical:
            summary.append(f"{critical} critical")
        if errors:
            summary.append(f"{errors} errors")
        if warnings:
            summary.append(f"{warnings} warnings")
        if infos:
            summary.append(f"{infos} info")
        reasons = [f"Validation issues detected: {', '.join(summary)}"]

        if critical:
            reasons.append('Critical validation issues prevent automated processing')
        elif errors > 2:
            reasons.append('Multiple validation errors indicate data quality concerns')
        elif errors:
            reasons.append('Validation errors require human review for resolution')

        types = Counter(issue.issue_type.name.lower().replace('_', ' ') for issue in issues)
        reasons.append('Issue types: ' + ', '.join(f"{n} {t}" for t, n in types.items()))
        return reasons

    def _rationale(
        self,
        context: DecisionContext,
        decision_type: DecisionType,
        threshold: float,
        risk: RiskAssessment,
    ) -> List[str]:
        issues = context.validation_issues
        critical_count = sum(1 for i in issues if i.severity == IssueSeverity.CRITICAL)

        if decision_type == DecisionType.AUTO_APPROVE:
            reasons = ['Auto-approval granted due to sufficient confidence and acceptable risk profile']
            if context.confidence < 0.9:
                reasons.append('Human review was considered but confidence and risk factors support automation')
            if risk.risk_level != RiskLevel.VERY_LOW:
                reasons.append('Risk factors present but within acceptable limits for automated processing')
            return reasons

        if decision_type == DecisionType.HUMAN_REVIEW_REQUIRED:
            if not context.applied_memories:
                reasons = ['Human review required due to limited memory history for reliable automation']
            elif context.confidence < threshold:
                reasons = ['Human review required due to confidence below automation threshold']
            else:
                reasons = ['Human review required due to risk factors despite adequate confidence']
            if context.confidence >= self.config.auto_approval_threshold:
                reasons.append(
                    f"Auto-approval not granted because risk level {risk.risk_level.value} "
                    f"exceeds tolerance {self.config.risk_tolerance.value}"
                )

            focus = []
            if issues:
                focus.append('validation issues')
            if any(m.confidence < 0.6 for m in context.applied_memories):
                focus.append('low-confidence memory applications')
            if risk.risk_level >= RiskLevel.HIGH:
                focus.append('high-risk factors')
            if focus:
                reasons.append(f"Human reviewer should focus on: {', '.join(focus)}")
            return reasons

        if decision_type == DecisionType.ESCALATE_TO_EXPERT:
            reasons = ['Expert escalation required due to complexity beyond standard processing capabilities']
            if risk.risk_level == RiskLevel.VERY_HIGH:
                reasons.append('Very high risk level requires specialized expertise')
            if critical_count > 1:
                reasons.append('Multiple critical issues require expert analysis')
            reasons.append(
                f"Not routed to standard human review because a risk factor exceeds severity {ESCALATION_SEVERITY}"
            )
            return reasons

        if decision_type == DecisionType.REJECT_INVOICE:
            reasons = ['Invoice rejection necessary due to critical issues preventing reliable processing']
            if context.confidence < 0.2:
                reasons.append('Extremely low confidence makes processing unreliable')
            if critical_count:
                reasons.append('Critical validation failures make processing impossible')
            reasons.append(
                'Critical validation issues override confidence, so neither auto-approval nor human review applies'
            )
            return reasons

        reasons = ['Additional information required to achieve reliable processing confidence']
        if context.confidence < 0.4:
            reasons.append('Current confidence too low for any automated processing')
        reasons.append(
            f"Not sent to human review because confidence {context.confidence * 100:.1f}% "
            f"is below the rejection threshold {self.config.rejection_threshold * 100:.1f}%"
        )

        needed = []
        if not context.applied_memories:
            needed.append('vendor-specific processing patterns')
        if any(i.issue_type == ValidationIssueType.MISSING_FIELD for i in issues):
            needed.append('missing required fields')
        if any(i.issue_type == ValidationIssueType.INVALID_FORMAT for i in issues):
            needed.append('data format clarification')
        if context.memory_context.invoice_characteristics.extraction_quality == QualityLevel.POOR:
            needed.append('a cleaner copy of the invoice')
        if needed:
            reasons.append(f"Additional information needed: {', '.join(needed)}")
        return reasons
