"""
Tests for the decision engine: decision table, decision confidence,
recommended actions, reasoning and the failure fallback.
"""

import pytest

from invoice_memory.audit import AuditOperation, AuditTrail
from invoice_memory.config import ConfidenceConfig, DecisionConfig
from invoice_memory.confidence import ConfidenceManager
from invoice_memory.decision import (
    ActionType,
    DecisionContext,
    DecisionEngine,
    DecisionType,
    RiskAssessment,
)
from invoice_memory.errors import MemoryValidationError
from invoice_memory.memory import InMemoryMemoryStore, RiskLevel
from invoice_memory.validation import IssueSeverity, ValidationIssueType

from helpers import fixed_clock, make_context, make_correction_memory, make_issue, make_vendor_memory


def trusted_memories():
    return (make_vendor_memory('v1', confidence=0.9), make_correction_memory('c1', confidence=0.8))


class TestDecisionTable:
    """Tests for the ordered decision rules."""

    def setup_method(self):
        self.store = InMemoryMemoryStore(config={'escalation_threshold': 0.7})
        self.manager = ConfidenceManager(self.store, clock=fixed_clock)
        self.engine = DecisionEngine(self.manager)

    def decide(self, confidence, memories=None, issues=(), amount=1000.0, vendor_id='acme', engine=None):
        context = DecisionContext(
            invoice_id='INV-1',
            confidence=confidence,
            memory_context=make_context(vendor_id),
            applied_memories=trusted_memories() if memories is None else tuple(memories),
            validation_issues=tuple(issues),
            invoice_amount=amount,
            currency='EUR',
        )
        return (engine or self.engine).make_decision(context)

    @pytest.mark.parametrize("confidence", [0.05, 0.5, 0.99])
    def test_critical_issue_rejects(self, confidence):
        decision = self.decide(confidence, issues=[make_issue(IssueSeverity.CRITICAL)])
        assert decision.decision_type == DecisionType.REJECT_INVOICE
        assert 'Critical validation failures make processing impossible' in decision.reasoning
        assert 'Critical validation issues override confidence' in decision.reasoning

    def test_low_confidence_requests_info(self):
        decision = self.decide(0.2)
        assert decision.decision_type == DecisionType.REQUEST_ADDITIONAL_INFO
        assert decision.recommended_actions[0].action_type == ActionType.CONTACT_VENDOR
        assert (
            'Not sent to human review because confidence 20.0% is below the rejection threshold 30.0%'
            in decision.reasoning
        )

    def test_very_high_risk_escalates(self):
        decision = self.decide(0.99, amount=25000)
        assert decision.decision_type == DecisionType.ESCALATE_TO_EXPERT
        assert decision.risk_assessment.risk_level == RiskLevel.VERY_HIGH
        assert 'Very high risk level requires specialized expertise' in decision.reasoning
        assert 'Not routed to standard human review because a risk factor exceeds severity 0.8' in decision.reasoning

    def test_scenario_auto_approve_with_low_risk(self):
        # One weak memory out of four gives technical risk 0.25 (LOW)
        memories = [make_vendor_memory(f'v{i}', confidence=0.9) for i in range(3)]
        memories.append(make_correction_memory('weak', confidence=0.5))
        decision = self.decide(0.92, memories=memories, amount=1000)

        assert decision.risk_assessment.risk_level == RiskLevel.LOW
        assert decision.decision_type == DecisionType.AUTO_APPROVE
        assert decision.confidence == pytest.approx(0.966)
        assert 'Final decision confidence: 96.6%' in decision.reasoning

    @pytest.mark.parametrize("confidence", [0.85, 0.9, 0.97, 1.0])
    @pytest.mark.parametrize("amount", [0.0, 500.0, 10000.0])
    def test_high_confidence_clean_invoice_auto_approves(self, confidence, amount):
        decision = self.decide(confidence, amount=amount)
        assert decision.decision_type == DecisionType.AUTO_APPROVE

    def test_high_risk_above_tolerance_needs_review(self):
        # Financial severity 0.7 -> HIGH, above the MEDIUM tolerance
        decision = self.decide(0.9, amount=14000)
        assert decision.risk_assessment.risk_level == RiskLevel.HIGH
        assert decision.decision_type == DecisionType.HUMAN_REVIEW_REQUIRED

    def test_risk_tolerance_gates_auto_approval(self):
        engine = DecisionEngine(self.manager, DecisionConfig(risk_tolerance='high'))
        decision = self.decide(0.9, amount=14000, engine=engine)
        assert decision.decision_type == DecisionType.AUTO_APPROVE

    def test_conservative_mode_for_unknown_vendor(self):
        decision = self.decide(0.75, memories=[])
        assert decision.decision_type == DecisionType.HUMAN_REVIEW_REQUIRED
        assert 'New or unfamiliar vendor acme requires conservative approach' in decision.reasoning

    def test_conservative_mode_off(self):
        engine = DecisionEngine(self.manager, DecisionConfig(conservative_mode_for_new_vendors=False))
        decision = self.decide(0.75, memories=[], engine=engine)
        assert decision.decision_type == DecisionType.AUTO_APPROVE

    def test_above_threshold_auto_approves(self):
        decision = self.decide(0.75)
        assert decision.decision_type == DecisionType.AUTO_APPROVE

    def test_below_threshold_needs_review(self):
        decision = self.decide(0.5)
        assert decision.decision_type == DecisionType.HUMAN_REVIEW_REQUIRED
        assert 'below escalation threshold 70.0%' in decision.reasoning

    def test_threshold_read_from_store(self):
        self.store.set_config_value('escalation_threshold', 0.5)
        assert self.decide(0.6).decision_type == DecisionType.AUTO_APPROVE

    def test_configured_default_threshold_reaches_decision(self):
        manager = ConfidenceManager(
            InMemoryMemoryStore(), ConfidenceConfig(default_escalation_threshold=0.5), clock=fixed_clock
        )
        decision = self.decide(0.6, engine=DecisionEngine(manager))
        assert decision.decision_type == DecisionType.AUTO_APPROVE
        assert 'meets escalation threshold 50.0%' in decision.reasoning

    def test_determine_decision_type_is_pure(self):
        risk = RiskAssessment(risk_level=RiskLevel.VERY_LOW)
        args = dict(
            confidence=0.8,
            escalation_threshold=0.7,
            risk=risk,
            applied_memory_count=2,
            validation_issues=(),
            invoice_amount=100.0,
        )
        assert self.engine.determine_decision_type(**args) == DecisionType.AUTO_APPROVE
        assert self.engine.determine_decision_type(**args) == DecisionType.AUTO_APPROVE


class TestDecisionConfidence:

    def setup_method(self):
        self.engine = DecisionEngine(ConfidenceManager(InMemoryMemoryStore()))

    @pytest.mark.parametrize("level,factor", [
        (RiskLevel.VERY_LOW, 1.1),
        (RiskLevel.LOW, 1.05),
        (RiskLevel.MEDIUM, 1.0),
        (RiskLevel.HIGH, 0.9),
        (RiskLevel.VERY_HIGH, 0.8),
    ])
    def test_risk_factor(self, level, factor):
        result = self.engine.calculate_decision_confidence(0.5, RiskAssessment(risk_level=level), ())
        assert result == pytest.approx(0.5 * factor)

    def test_error_penalty(self):
        issues = [make_issue(IssueSeverity.ERROR), make_issue(IssueSeverity.CRITICAL), make_issue(IssueSeverity.INFO)]
        result = self.engine.calculate_decision_confidence(0.8, RiskAssessment(risk_level=RiskLevel.HIGH), issues)
        assert result == pytest.approx(0.8 * 0.9 * 0.8)

    def test_error_penalty_floor(self):
        issues = [make_issue(IssueSeverity.ERROR)] * 7
        result = self.engine.calculate_decision_confidence(0.8, RiskAssessment(risk_level=RiskLevel.MEDIUM), issues)
        assert result == pytest.approx(0.4)

    def test_clamped(self):
        result = self.engine.calculate_decision_confidence(0.99, RiskAssessment(risk_level=RiskLevel.VERY_LOW), ())
        assert result == 1.0


class TestRecommendedActions:

    def setup_method(self):
        self.engine = DecisionEngine(ConfidenceManager(InMemoryMemoryStore()))

    def context(self, memories=(), issues=()):
        return DecisionContext(
            invoice_id='INV-1',
            confidence=0.6,
            applied_memories=tuple(memories),
            validation_issues=tuple(issues),
        )

    @pytest.mark.parametrize("decision_type", list(DecisionType))
    def test_always_at_least_one_action(self, decision_type):
        assert len(self.engine.generate_recommended_actions(self.context(), decision_type)) >= 1

    def test_review_adds_field_checks(self):
        issues = [
            make_issue(IssueSeverity.ERROR, field='due_date'),
            make_issue(IssueSeverity.WARNING, field='total'),
            make_issue(IssueSeverity.CRITICAL, field='vat'),
        ]
        actions = self.engine.generate_recommended_actions(
            self.context(issues=issues), DecisionType.HUMAN_REVIEW_REQUIRED
        )
        assert [a.action_type for a in actions] == [
            ActionType.ESCALATE_ISSUE,
            ActionType.VALIDATE_FIELD,
            ActionType.VALIDATE_FIELD,
        ]
        assert 'due_date' in actions[1].description

    def test_weak_memory_adds_update(self):
        memories = [make_correction_memory('weak', confidence=0.4)]
        actions = self.engine.generate_recommended_actions(
            self.context(memories=memories), DecisionType.AUTO_APPROVE
        )
        assert [a.action_type for a in actions] == [ActionType.APPLY_CORRECTION, ActionType.UPDATE_MEMORY]


class TestReasoningAndAudit:

    def setup_method(self):
        self.manager = ConfidenceManager(InMemoryMemoryStore(config={'escalation_threshold': 0.7}))
        self.engine = DecisionEngine(self.manager)

    def test_reasoning_sections(self):
        context = DecisionContext(
            invoice_id='INV-1',
            confidence=0.65,
            memory_context=make_context('acme'),
            applied_memories=trusted_memories(),
            validation_issues=(make_issue(IssueSeverity.WARNING, ValidationIssueType.SUSPICIOUS_VALUE),),
        )
        reasoning = self.engine.make_decision(context).reasoning

        assert reasoning.startswith('Decision: human_review_required. ')
        assert 'Small confidence gap' in reasoning
        assert 'Risk assessment: very_low with 0 factors identified' in reasoning
        assert '2 memories applied with average confidence 85.0%' in reasoning
        assert 'Validation issues detected: 1 warnings' in reasoning
        assert 'Issue types: 1 suspicious value' in reasoning
        assert 'confidence below automation threshold' in reasoning
        assert reasoning.endswith('.')

    def test_clean_validation(self):
        context = DecisionContext(invoice_id='INV-1', confidence=0.9, applied_memories=trusted_memories())
        assert 'All validation checks passed successfully' in self.engine.make_decision(context).reasoning

    def test_decision_is_audited(self):
        trail = AuditTrail(clock=fixed_clock)
        context = DecisionContext(invoice_id='INV-1', confidence=0.9, applied_memories=trusted_memories())
        self.engine.make_decision(context, trail=trail)

        step = trail.by_operation(AuditOperation.DECISION_MAKING)[0]
        assert step.description == 'Confidence-based decision making'
        assert step.actor == 'DecisionEngine'
        assert step.output['decision_type'] == 'auto_approve'

    def test_to_dict(self):
        context = DecisionContext(invoice_id='INV-1', confidence=0.9, applied_memories=trusted_memories())
        data = self.engine.make_decision(context).to_dict()
        assert data['decision_type'] == 'auto_approve'
        assert data['recommended_actions'][0]['action_type'] == 'apply_correction'
        assert data['risk_assessment']['risk_level'] == 'very_low'

    def test_context_validation(self):
        with pytest.raises(MemoryValidationError):
            DecisionContext(invoice_id='INV-1', confidence=1.5)
        with pytest.raises(MemoryValidationError):
            DecisionContext(invoice_id='INV-1', confidence=0.5, invoice_amount=-1)


class TestFailureFallback:
    """make_decision never raises."""

    def setup_method(self):
        self.engine = DecisionEngine(ConfidenceManager(InMemoryMemoryStore()))

    def test_internal_error_falls_back_to_review(self, monkeypatch):
        def broken(context):
            raise RuntimeError("boom")

        monkeypatch.setattr(self.engine, 'assess_risk', broken)
        trail = AuditTrail(clock=fixed_clock)
        decision = self.engine.make_decision(
            DecisionContext(invoice_id='INV-1', confidence=0.95, applied_memories=trusted_memories()),
            trail=trail,
        )

        assert decision.decision_type == DecisionType.HUMAN_REVIEW_REQUIRED
        assert 'RuntimeError: boom' in decision.reasoning
        assert decision.recommended_actions[0].action_type == ActionType.ESCALATE_ISSUE
        assert trail.by_operation(AuditOperation.ERROR_HANDLING)

    def test_malformed_context(self):
        decision = self.engine.make_decision(None)
        assert decision.decision_type == DecisionType.HUMAN_REVIEW_REQUIRED
        assert decision.recommended_actions

    def test_failing_threshold_store_uses_default(self):
        class DownStore:
            def get_config_value(self, key):
                raise ConnectionError("down")

            def set_config_value(self, key, value):
                raise ConnectionError("down")

        engine = DecisionEngine(ConfidenceManager(DownStore()))
        decision = engine.make_decision(
            DecisionContext(invoice_id='INV-1', confidence=0.75, applied_memories=trusted_memories())
        )
        assert decision.decision_type == DecisionType.AUTO_APPROVE
