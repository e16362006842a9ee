"""
Memory factories shared by the test modules.

All timestamps are relative to NOW so results do not depend on the wall clock.
"""

from datetime import datetime, timedelta, timezone

from invoice_memory.memory.types import (
    ComplexityLevel,
    Condition,
    ConditionOperator,
    ContextFactor,
    CorrectionAction,
    CorrectionActionType,
    CorrectionPayload,
    CorrectionType,
    DiscrepancyType,
    FieldMapping,
    HumanDecision,
    HumanDecisionType,
    InvoiceCharacteristics,
    Memory,
    MemoryContext,
    MemoryPattern,
    MemoryType,
    PatternType,
    QualityLevel,
    ResolutionAction,
    ResolutionOutcome,
    ResolutionPayload,
    VendorPayload,
)
from invoice_memory.validation.issues import IssueSeverity, ValidationIssue, ValidationIssueType

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


def make_context(
    vendor_id=None,
    language='en',
    complexity=ComplexityLevel.MODERATE,
    quality=QualityLevel.GOOD,
):
    return MemoryContext(
        vendor_id=vendor_id,
        invoice_characteristics=InvoiceCharacteristics(
            complexity=complexity,
            language=language,
            extraction_quality=quality,
        ),
    )


def _times(idle_days, age_days):
    created_at = NOW - timedelta(days=max(age_days, idle_days))
    last_used = NOW - timedelta(days=idle_days)
    return created_at, last_used


def make_vendor_memory(
    memory_id='mem-vendor',
    vendor_id='acme',
    confidence=0.8,
    usage_count=5,
    success_rate=0.9,
    idle_days=1.0,
    age_days=30.0,
    mappings=(('Rechnungsnummer', 'invoice_number'),),
    pattern_type=PatternType.FIELD_MAPPING,
    language='en',
    complexity=ComplexityLevel.MODERATE,
    quality=QualityLevel.GOOD,
):
    created_at, last_used = _times(idle_days, age_days)
    return Memory(
        id=memory_id,
        type=MemoryType.VENDOR,
        payload=VendorPayload(
            vendor_id=vendor_id or 'generic',
            field_mappings=tuple(FieldMapping(source, target, confidence=0.9) for source, target in mappings),
        ),
        pattern=MemoryPattern(pattern_type=pattern_type, pattern_data={'source': 'layout'}),
        confidence=confidence,
        created_at=created_at,
        last_used=last_used,
        context=make_context(vendor_id, language, complexity, quality),
        usage_count=usage_count,
        success_rate=success_rate,
    )


def make_correction_memory(
    memory_id='mem-correction',
    target_field='quantity',
    vendor_id=None,
    confidence=0.7,
    usage_count=3,
    success_rate=0.8,
    idle_days=2.0,
    age_days=20.0,
    conditions=1,
    pattern_type=PatternType.KEYWORD,
    language='en',
    complexity=ComplexityLevel.MODERATE,
    quality=QualityLevel.GOOD,
):
    created_at, last_used = _times(idle_days, age_days)
    return Memory(
        id=memory_id,
        type=MemoryType.CORRECTION,
        payload=CorrectionPayload(
            correction_type=CorrectionType.QUANTITY_CORRECTION,
            correction_action=CorrectionAction(
                action_type=CorrectionActionType.MULTIPLY_BY,
                target_field=target_field,
                new_value=10,
            ),
            trigger_conditions=tuple(
                Condition(field=f'line_{i}', operator=ConditionOperator.EXISTS) for i in range(conditions)
            ),
        ),
        pattern=MemoryPattern(pattern_type=pattern_type, pattern_data={'keywords': ['Stk']}),
        confidence=confidence,
        created_at=created_at,
        last_used=last_used,
        context=make_context(vendor_id, language, complexity, quality),
        usage_count=usage_count,
        success_rate=success_rate,
    )


def make_resolution_memory(
    memory_id='mem-resolution',
    discrepancy=DiscrepancyType.QUANTITY_MISMATCH,
    action=ResolutionAction.APPLY_CORRECTION,
    vendor_id=None,
    confidence=0.75,
    usage_count=2,
    success_rate=0.85,
    idle_days=3.0,
    age_days=40.0,
    human_confidence=1.0,
    factor_weights=(),
    threshold=0.5,
    pattern_type=PatternType.CONTEXTUAL,
    language='en',
):
    created_at, last_used = _times(idle_days, age_days)
    return Memory(
        id=memory_id,
        type=MemoryType.RESOLUTION,
        payload=ResolutionPayload(
            discrepancy_type=discrepancy,
            resolution_outcome=ResolutionOutcome(resolution_action=action),
            human_decision=HumanDecision(
                decision_type=HumanDecisionType.APPROVE,
                user_id='reviewer-1',
                confidence=human_confidence,
            ),
            context_factors=tuple(ContextFactor('vendor_history', weight=w) for w in factor_weights),
        ),
        pattern=MemoryPattern(pattern_type=pattern_type, threshold=threshold),
        confidence=confidence,
        created_at=created_at,
        last_used=last_used,
        context=make_context(vendor_id, language),
        usage_count=usage_count,
        success_rate=success_rate,
    )


def make_issue(severity=IssueSeverity.ERROR, issue_type=ValidationIssueType.MISSING_FIELD, field='due_date'):
    return ValidationIssue(
        severity=severity,
        issue_type=issue_type,
        affected_field=field,
        description=f"{field} failed validation",
    )
