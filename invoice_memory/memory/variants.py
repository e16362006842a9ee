"""
Variant Behavior

Per-variant operations for memories, dispatched on `Memory.type`:
- is_applicable: can the memory be applied in a context at all
- calculate_relevance: variant-specific relevance in [0, 1]
- get_description: one-line human-readable summary

Usage:
    from invoice_memory.memory.variants import calculate_relevance

    relevance = calculate_relevance(memory, context)
"""

from typing import Callable, Dict

from .types import (
    CorrectionPayload,
    Memory,
    MemoryContext,
    MemoryType,
    ResolutionPayload,
    VendorPayload,
)


# ============================================================================
# Vendor memories
# ============================================================================

def _vendor_applicable(memory: Memory, context: MemoryContext) -> bool:
    payload: VendorPayload = memory.payload
    return context.vendor_id == payload.vendor_id


def _vendor_relevance(memory: Memory, context: MemoryContext) -> float:
    if not _vendor_applicable(memory, context):
        return 0.0

    relevance = memory.confidence * (0.5 + 0.5 * memory.success_rate)

    if context.language == memory.context.language:
        relevance *= 1.1
    if context.invoice_characteristics.complexity == memory.context.invoice_characteristics.complexity:
        relevance *= 1.05

    return min(1.0, relevance)


def _vendor_description(memory: Memory) -> str:
    payload: VendorPayload = memory.payload
    return (
        f"Vendor memory for {payload.vendor_id} with {len(payload.field_mappings)} field mappings "
        f"and {len(payload.currency_patterns)} currency patterns"
    )


# ============================================================================
# Correction memories
# ============================================================================

def _correction_applicable(memory: Memory, context: MemoryContext) -> bool:
    # Conditions are evaluated when the correction is applied; here we only
    # require that there is something to evaluate.
    payload: CorrectionPayload = memory.payload
    return len(payload.trigger_conditions) > 0


def _correction_relevance(memory: Memory, context: MemoryContext) -> float:
    relevance = memory.confidence * (0.3 + 0.7 * memory.success_rate)

    if context.vendor_id and memory.vendor_id == context.vendor_id:
        relevance *= 1.2
    if context.invoice_characteristics.complexity == memory.context.invoice_characteristics.complexity:
        relevance *= 1.1

    return min(1.0, relevance)


def _correction_description(memory: Memory) -> str:
    payload: CorrectionPayload = memory.payload
    return (
        f"Correction memory for {payload.correction_type.value} "
        f"with {len(payload.trigger_conditions)} conditions"
    )


# ============================================================================
# Resolution memories
# ============================================================================

def _resolution_applicable(memory: Memory, context: MemoryContext) -> bool:
    return memory.pattern.threshold <= memory.confidence


def _resolution_relevance(memory: Memory, context: MemoryContext) -> float:
    payload: ResolutionPayload = memory.payload
    relevance = memory.confidence * (0.5 + 0.5 * payload.human_decision.confidence)

    if context.vendor_id and memory.vendor_id == context.vendor_id:
        relevance *= 1.3

    factor_boost = sum(factor.weight * 0.1 for factor in payload.context_factors)
    relevance *= 1 + min(0.5, factor_boost)

    return min(1.0, relevance)


def _resolution_description(memory: Memory) -> str:
    payload: ResolutionPayload = memory.payload
    return (
        f"Resolution memory for {payload.discrepancy_type.value} "
        f"resolved as {payload.resolution_outcome.resolution_action.value}"
    )


# ============================================================================
# Dispatch tables
# ============================================================================

_APPLICABILITY: Dict[MemoryType, Callable[[Memory, MemoryContext], bool]] = {
    MemoryType.VENDOR: _vendor_applicable,
    MemoryType.CORRECTION: _correction_applicable,
    MemoryType.RESOLUTION: _resolution_applicable,
}

_RELEVANCE: Dict[MemoryType, Callable[[Memory, MemoryContext], float]] = {
    MemoryType.VENDOR: _vendor_relevance,
    MemoryType.CORRECTION: _correction_relevance,
    MemoryType.RESOLUTION: _resolution_relevance,
}

_DESCRIPTION: Dict[MemoryType, Callable[[Memory], str]] = {
    MemoryType.VENDOR: _vendor_description,
    MemoryType.CORRECTION: _correction_description,
    MemoryType.RESOLUTION: _resolution_description,
}


def is_applicable(memory: Memory, context: MemoryContext) -> bool:
    """Whether the memory can apply in the given context."""
    return _APPLICABILITY[memory.type](memory, context)


def calculate_relevance(memory: Memory, context: MemoryContext) -> float:
    """Variant-specific relevance of the memory to the context, in [0, 1]."""
    return _RELEVANCE[memory.type](memory, context)


def get_description(memory: Memory) -> str:
    return _DESCRIPTION[memory.type](memory)
