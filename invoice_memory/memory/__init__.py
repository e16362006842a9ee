"""
Memory Package

The memory data model, per-variant behavior and the store contract.

Memory variants:
- VENDOR: field mappings, VAT, currency and date conventions of one vendor
- CORRECTION: a correction and the conditions that trigger it
- RESOLUTION: how a discrepancy type was resolved by a human

Usage:
    from invoice_memory.memory import InMemoryMemoryStore, load_memories

    store = InMemoryMemoryStore(load_memories('memories.yaml'))
    vendor_memories = store.find_memories_by_vendor('acme-gmbh')
"""

from .types import (
    Memory,
    MemoryType,
    MemoryPattern,
    PatternType,
    MemoryContext,
    InvoiceCharacteristics,
    ComplexityLevel,
    QualityLevel,
    RiskLevel,
    ConflictResolutionStrategy,
    VendorPayload,
    FieldMapping,
    VATBehavior,
    CurrencyPattern,
    DateFormat,
    CorrectionPayload,
    CorrectionType,
    CorrectionAction,
    CorrectionActionType,
    Condition,
    ConditionOperator,
    ResolutionPayload,
    ResolutionOutcome,
    ResolutionAction,
    DiscrepancyType,
    HumanDecision,
    HumanDecisionType,
    ContextFactor,
)
from .variants import is_applicable, calculate_relevance, get_description
from .store import (
    MemoryStore,
    ThresholdStore,
    InMemoryMemoryStore,
    load_memories,
    ESCALATION_THRESHOLD_KEY,
)

__all__ = [
    'Memory',
    'MemoryType',
    'MemoryPattern',
    'PatternType',
    'MemoryContext',
    'InvoiceCharacteristics',
    'ComplexityLevel',
    'QualityLevel',
    'RiskLevel',
    'ConflictResolutionStrategy',
    'VendorPayload',
    'FieldMapping',
    'VATBehavior',
    'CurrencyPattern',
    'DateFormat',
    'CorrectionPayload',
    'CorrectionType',
    'CorrectionAction',
    'CorrectionActionType',
    'Condition',
    'ConditionOperator',
    'ResolutionPayload',
    'ResolutionOutcome',
    'ResolutionAction',
    'DiscrepancyType',
    'HumanDecision',
    'HumanDecisionType',
    'ContextFactor',
    'is_applicable',
    'calculate_relevance',
    'get_description',
    'MemoryStore',
    'ThresholdStore',
    'InMemoryMemoryStore',
    'load_memories',
    'ESCALATION_THRESHOLD_KEY',
]
