"""
Recall Package

Memory retrieval, context matching, ranking and conflict resolution.

Usage:
    from invoice_memory.recall import MemoryRecallEngine, InvoiceProcessingContext

    engine = MemoryRecallEngine(store)
    result = engine.recall_memories(InvoiceProcessingContext(
        invoice_id='INV-2024-001',
        vendor_id='acme-gmbh',
        vendor_language='de',
    ))

    for ranked in result.memories:
        print(f"{ranked.memory.id}: {ranked.ranking_score:.3f} - {ranked.selection_reason}")
"""

from .recall_engine import (
    MemoryRecallEngine,
    MemoryQuery,
    RecallResult,
    RankedMemory,
    ContextMatchDetails,
    ContextMatchStats,
    InvoiceProcessingContext,
    ExtractedField,
    assess_invoice_complexity,
    assess_extraction_quality,
    build_memory_context,
)
from .conflicts import (
    ConflictType,
    MemoryConflict,
    resolve_conflicts,
    select_by_strategy,
)

__all__ = [
    'MemoryRecallEngine',
    'MemoryQuery',
    'RecallResult',
    'RankedMemory',
    'ContextMatchDetails',
    'ContextMatchStats',
    'InvoiceProcessingContext',
    'ExtractedField',
    'assess_invoice_complexity',
    'assess_extraction_quality',
    'build_memory_context',
    'ConflictType',
    'MemoryConflict',
    'resolve_conflicts',
    'select_by_strategy',
]
