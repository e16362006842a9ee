"""
Memory Recall Engine

Finds the memories that apply to an invoice and orders them.

Pipeline:
1. Gather candidates (vendor lookup first, then by type or everything),
   de-duplicated by id with the first occurrence kept
2. Filter by minimum confidence, maximum age and pattern type
3. Score context match; drop candidates below the relevance floor
4. Rank and keep the top `max_memories_per_query`
5. Resolve conflicts among the kept memories
6. Summarize match statistics and explain the selection

Context match is additive:
    vendor id      +0.40
    pattern type   +0.20  (every pattern type is compatible for now)
    language       +0.15
    complexity     +0.15  (memory level <= invoice level)
    quality        +0.10  (memory level >= invoice level)

Ranking:
    score = relevance*0.4 + confidence*0.4 + recency*0.2
    recency = exp(-days_since_last_use / 30)

Sorting is stable: equal scores keep retrieval order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..audit import AuditOperation, AuditTrail, timed
from ..config import RecallConfig
from ..errors import MemoryValidationError
from ..memory.store import MemoryStore
from ..memory.types import (
    ComplexityLevel,
    InvoiceCharacteristics,
    Memory,
    MemoryContext,
    MemoryType,
    PatternType,
    QualityLevel,
    days_between,
    parse_enum,
    require_unit_interval,
    utc_now,
)
from .conflicts import MemoryConflict, resolve_conflicts


# ============================================================================
# Invoice input
# ============================================================================

@dataclass(frozen=True)
class ExtractedField:
    """A field produced by upstream extraction."""
    name: str
    value: Any = None
    confidence: float = 1.0

    def __post_init__(self):
        require_unit_interval(self.confidence, f"extracted field '{self.name}' confidence")


@dataclass(frozen=True)
class InvoiceProcessingContext:
    """
    What the core knows about an incoming invoice.

    Complexity and extraction quality are assessed from the extracted fields
    and raw text when not given.
    """
    invoice_id: str
    vendor_id: Optional[str] = None
    vendor_language: str = 'en'
    extracted_fields: Tuple[ExtractedField, ...] = ()
    raw_text: str = ''
    invoice_amount: Optional[float] = None
    currency: Optional[str] = None
    document_format: str = 'pdf'
    complexity: Optional[ComplexityLevel] = None
    extraction_quality: Optional[QualityLevel] = None

    def __post_init__(self):
        if not self.invoice_id:
            raise MemoryValidationError("Invoice context needs an invoice_id", field_name='invoice_id')
        if self.invoice_amount is not None and (
            isinstance(self.invoice_amount, bool)
            or not isinstance(self.invoice_amount, (int, float))
            or self.invoice_amount < 0
        ):
            raise MemoryValidationError(
                f"invoice_amount must be a non-negative number, got {self.invoice_amount!r}",
                field_name='invoice_amount',
                value=self.invoice_amount,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'invoice_id': self.invoice_id,
            'vendor_id': self.vendor_id,
            'vendor_language': self.vendor_language,
            'extracted_fields': [
                {'name': f.name, 'value': f.value, 'confidence': f.confidence}
                for f in self.extracted_fields
            ],
            'invoice_amount': self.invoice_amount,
            'currency': self.currency,
            'document_format': self.document_format,
            'complexity': self.complexity.value if self.complexity else None,
            'extraction_quality': self.extraction_quality.value if self.extraction_quality else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvoiceProcessingContext':
        complexity = data.get('complexity')
        quality = data.get('extraction_quality')
        return cls(
            invoice_id=data.get('invoice_id') or data.get('id', ''),
            vendor_id=data.get('vendor_id'),
            vendor_language=data.get('vendor_language') or data.get('language', 'en'),
            extracted_fields=tuple(
                ExtractedField(
                    name=f.get('name', ''),
                    value=f.get('value'),
                    confidence=f.get('confidence', 1.0),
                )
                for f in data.get('extracted_fields') or ()
            ),
            raw_text=data.get('raw_text', ''),
            invoice_amount=data.get('invoice_amount'),
            currency=data.get('currency'),
            document_format=data.get('document_format', 'pdf'),
            complexity=parse_enum(ComplexityLevel, complexity, 'complexity') if complexity else None,
            extraction_quality=parse_enum(QualityLevel, quality, 'extraction_quality') if quality else None,
        )


def assess_invoice_complexity(invoice: InvoiceProcessingContext) -> ComplexityLevel:
    """Complexity from the number of extracted fields and raw text length."""
    field_count = len(invoice.extracted_fields)
    text_length = len(invoice.raw_text)

    if field_count < 5 and text_length < 1000:
        return ComplexityLevel.SIMPLE
    if field_count < 15 and text_length < 5000:
        return ComplexityLevel.MODERATE
    if field_count < 25 and text_length < 10000:
        return ComplexityLevel.COMPLEX
    return ComplexityLevel.VERY_COMPLEX


def assess_extraction_quality(invoice: InvoiceProcessingContext) -> QualityLevel:
    """Quality from the mean confidence of the extracted fields."""
    if not invoice.extracted_fields:
        return QualityLevel.POOR

    average = sum(f.confidence for f in invoice.extracted_fields) / len(invoice.extracted_fields)
    if average >= 0.9:
        return QualityLevel.EXCELLENT
    if average >= 0.7:
        return QualityLevel.GOOD
    if average >= 0.5:
        return QualityLevel.FAIR
    return QualityLevel.POOR


def build_memory_context(invoice: InvoiceProcessingContext) -> MemoryContext:
    return MemoryContext(
        vendor_id=invoice.vendor_id,
        invoice_characteristics=InvoiceCharacteristics(
            complexity=invoice.complexity or assess_invoice_complexity(invoice),
            language=invoice.vendor_language,
            document_format=invoice.document_format,
            extraction_quality=invoice.extraction_quality or assess_extraction_quality(invoice),
        ),
    )


# ============================================================================
# Query and results
# ============================================================================

@dataclass(frozen=True)
class MemoryQuery:
    """Explicit recall parameters."""
    context: MemoryContext
    memory_types: Optional[Tuple[MemoryType, ...]] = None
    pattern_types: Optional[Tuple[PatternType, ...]] = None
    min_confidence: Optional[float] = None
    max_age_days: Optional[float] = None

    def __post_init__(self):
        if self.min_confidence is not None:
            require_unit_interval(self.min_confidence, 'min_confidence')
        if self.max_age_days is not None and self.max_age_days < 0:
            raise MemoryValidationError(
                f"max_age_days cannot be negative, got {self.max_age_days}",
                field_name='max_age_days',
                value=self.max_age_days,
            )


@dataclass(frozen=True)
class ContextMatchDetails:
    vendor_match: bool
    pattern_match: bool
    language_match: bool
    complexity_match: bool
    quality_match: bool
    similarity_score: float
    matching_factors: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_match': self.vendor_match,
            'pattern_match': self.pattern_match,
            'language_match': self.language_match,
            'complexity_match': self.complexity_match,
            'quality_match': self.quality_match,
            'similarity_score': round(self.similarity_score, 4),
            'matching_factors': list(self.matching_factors),
        }


@dataclass(frozen=True)
class RankedMemory:
    """A recalled memory with its scores. Never persisted."""
    memory: Memory
    ranking_score: float
    relevance_score: float
    confidence_score: float
    recency_score: float
    context_match: ContextMatchDetails
    selection_reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'memory_id': self.memory.id,
            'memory_type': self.memory.type.value,
            'ranking_score': round(self.ranking_score, 4),
            'relevance_score': round(self.relevance_score, 4),
            'confidence_score': round(self.confidence_score, 4),
            'recency_score': round(self.recency_score, 4),
            'context_match': self.context_match.to_dict(),
            'selection_reason': self.selection_reason,
        }


@dataclass(frozen=True)
class ContextMatchStats:
    exact_vendor_matches: int = 0
    pattern_matches: int = 0
    language_matches: int = 0
    average_similarity: float = 0.0
    memory_type_distribution: Dict[MemoryType, int] = field(
        default_factory=lambda: {t: 0 for t in MemoryType}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'exact_vendor_matches': self.exact_vendor_matches,
            'pattern_matches': self.pattern_matches,
            'language_matches': self.language_matches,
            'average_similarity': round(self.average_similarity, 4),
            'memory_type_distribution': {t.value: n for t, n in self.memory_type_distribution.items()},
        }


@dataclass(frozen=True)
class RecallResult:
    memories: Tuple[RankedMemory, ...]
    total_considered: int
    filtered_out: int
    conflicts_resolved: Tuple[MemoryConflict, ...]
    context_match_stats: ContextMatchStats
    reasoning: str
    context: Optional[MemoryContext] = None

    @property
    def recalled(self) -> List[Memory]:
        """The recalled memories in ranking order."""
        return [rm.memory for rm in self.memories]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'memories': [rm.to_dict() for rm in self.memories],
            'total_considered': self.total_considered,
            'filtered_out': self.filtered_out,
            'conflicts_resolved': [c.to_dict() for c in self.conflicts_resolved],
            'context_match_stats': self.context_match_stats.to_dict(),
            'reasoning': self.reasoning,
        }


# ============================================================================
# Engine
# ============================================================================

class MemoryRecallEngine:
    """
    Retrieves, scores, ranks and de-conflicts memories.

    Store failures propagate as StoreUnavailableError; the caller decides
    whether to retry or fall back.
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[RecallConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config or RecallConfig()
        self.clock = clock or utc_now

    def recall_memories(
        self,
        invoice: InvoiceProcessingContext,
        trail: Optional[AuditTrail] = None,
    ) -> RecallResult:
        """Recall memories for an invoice."""
        with timed() as elapsed:
            context = build_memory_context(invoice)
            result = self.query_memories(MemoryQuery(context=context), trail=trail)

        logger.info(
            f"Recalled {len(result.memories)} memories for invoice {invoice.invoice_id} "
            f"(vendor={invoice.vendor_id or '-'})"
        )
        if trail is not None:
            trail.record(
                AuditOperation.MEMORY_RECALL,
                'Memory recall for invoice processing',
                input={
                    'invoice_id': invoice.invoice_id,
                    'vendor_id': invoice.vendor_id,
                    'language': invoice.vendor_language,
                },
                output={
                    'memories_recalled': len(result.memories),
                    'total_considered': result.total_considered,
                    'conflicts_resolved': len(result.conflicts_resolved),
                },
                actor='MemoryRecallEngine',
                duration_ms=elapsed(),
            )
        return result

    def query_memories(self, query: MemoryQuery, trail: Optional[AuditTrail] = None) -> RecallResult:
        """Run the recall pipeline for an explicit query."""
        with timed() as elapsed:
            context = query.context

            # Step 1: candidates
            candidates = self._gather_candidates(query)
            total_considered = len(candidates)

            # Step 2: hard filters
            filtered = self._apply_filters(candidates, query)

            # Step 3: relevance floor
            relevant = [
                m for m in filtered
                if self.calculate_context_match(m, context).similarity_score >= self.config.min_relevance_threshold
            ]
            filtered_out = total_considered - len(relevant)

            # Step 4: rank and truncate
            ranked = self.rank_memories(relevant, context)[:self.config.max_memories_per_query]

            # Step 5: conflicts
            conflicts = self.resolve_conflicts([rm.memory for rm in ranked], context)

            # Step 6: stats and reasoning
            stats = self._context_match_stats(ranked)
            reasoning = self._recall_reasoning(ranked, total_considered, filtered_out, conflicts, context)

        logger.debug(reasoning)
        if trail is not None:
            trail.record(
                AuditOperation.MEMORY_RECALL,
                'Memory query execution',
                input={
                    'vendor_id': context.vendor_id,
                    'memory_types': [t.value for t in query.memory_types] if query.memory_types else None,
                    'min_confidence': query.min_confidence,
                    'max_age_days': query.max_age_days,
                },
                output={
                    'total_considered': total_considered,
                    'filtered_out': filtered_out,
                    'memories_returned': len(ranked),
                    'conflicts_resolved': len(conflicts),
                },
                actor='MemoryRecallEngine',
                duration_ms=elapsed(),
            )

        return RecallResult(
            memories=tuple(ranked),
            total_considered=total_considered,
            filtered_out=filtered_out,
            conflicts_resolved=tuple(conflicts),
            context_match_stats=stats,
            reasoning=reasoning,
            context=context,
        )

    def calculate_context_match(self, memory: Memory, context: MemoryContext) -> ContextMatchDetails:
        """Additive similarity between a memory's context and the invoice's."""
        learned = memory.context.invoice_characteristics
        current = context.invoice_characteristics
        factors = []
        score = 0.0

        vendor_match = memory.matches_vendor(context.vendor_id)
        if vendor_match:
            score += 0.4
            factors.append('vendor ID match')

        pattern_match = self._pattern_type_compatible(memory.pattern.pattern_type, context)
        if pattern_match:
            score += 0.2
            factors.append('pattern type compatibility')

        language_match = learned.language == current.language
        if language_match:
            score += 0.15
            factors.append('language match')

        # Applies to invoices at least as complex as the one it was learned on
        complexity_match = learned.complexity <= current.complexity
        if complexity_match:
            score += 0.15
            factors.append('complexity compatibility')

        # Learned on extraction at least as clean as the current one
        quality_match = learned.extraction_quality >= current.extraction_quality
        if quality_match:
            score += 0.1
            factors.append('extraction quality compatibility')

        return ContextMatchDetails(
            vendor_match=vendor_match,
            pattern_match=pattern_match,
            language_match=language_match,
            complexity_match=complexity_match,
            quality_match=quality_match,
            similarity_score=min(1.0, score),
            matching_factors=tuple(factors),
        )

    def rank_memories(self, memories: Sequence[Memory], context: MemoryContext) -> List[RankedMemory]:
        """Score and order memories, best first. Equal scores keep input order."""
        now = self.clock()
        ranked = []
        for memory in memories:
            match = self.calculate_context_match(memory, context)
            relevance = match.similarity_score
            confidence = memory.confidence
            recency = self._recency_score(memory, now)

            score = (
                relevance * self.config.relevance_weight
                + confidence * self.config.confidence_weight
                + recency * self.config.recency_weight
            )
            ranked.append(RankedMemory(
                memory=memory,
                ranking_score=score,
                relevance_score=relevance,
                confidence_score=confidence,
                recency_score=recency,
                context_match=match,
                selection_reason=self._selection_reason(match, relevance, confidence, recency),
            ))

        return sorted(ranked, key=lambda rm: rm.ranking_score, reverse=True)

    def resolve_conflicts(self, memories: Sequence[Memory], context: MemoryContext) -> List[MemoryConflict]:
        return resolve_conflicts(memories, context, self.config.conflict_resolution_strategy)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gather_candidates(self, query: MemoryQuery) -> List[Memory]:
        candidates: List[Memory] = []
        vendor_id = query.context.vendor_id

        if vendor_id and self.config.enable_vendor_prioritization:
            candidates.extend(self.store.find_memories_by_vendor(vendor_id))

        if query.memory_types:
            for memory_type in query.memory_types:
                candidates.extend(self.store.find_memories_by_type(memory_type))
        else:
            candidates.extend(self.store.get_all_memories())

        unique = []
        seen = set()
        for memory in candidates:
            if memory.id in seen:
                continue
            seen.add(memory.id)
            unique.append(memory)
        return unique

    def _apply_filters(self, memories: List[Memory], query: MemoryQuery) -> List[Memory]:
        result = memories

        if query.min_confidence is not None:
            result = [m for m in result if m.confidence >= query.min_confidence]

        if query.max_age_days is not None:
            now = self.clock()
            result = [m for m in result if days_between(m.last_used, now) <= query.max_age_days]

        if query.pattern_types and self.config.enable_pattern_filtering:
            allowed = set(query.pattern_types)
            result = [m for m in result if m.pattern.pattern_type in allowed]

        return result

    @staticmethod
    def _pattern_type_compatible(pattern_type: PatternType, context: MemoryContext) -> bool:
        # Hook for restricting pattern types per context; all are compatible today
        return True

    @staticmethod
    def _recency_score(memory: Memory, now: datetime) -> float:
        idle_days = max(0.0, days_between(memory.last_used, now))
        return math.exp(-idle_days / 30)

    @staticmethod
    def _selection_reason(
        match: ContextMatchDetails,
        relevance: float,
        confidence: float,
        recency: float,
    ) -> str:
        reasons = []
        if match.vendor_match:
            reasons.append('exact vendor match')
        if confidence > 0.8:
            reasons.append('high confidence')
        if relevance > 0.7:
            reasons.append('high relevance')
        if recency > 0.8:
            reasons.append('recently used')
        if len(match.matching_factors) > 2:
            reasons.append(f"{len(match.matching_factors)} context factors match")

        if not reasons:
            return 'Selected based on overall ranking score'
        return f"Selected due to: {', '.join(reasons)}"

    @staticmethod
    def _context_match_stats(ranked: Sequence[RankedMemory]) -> ContextMatchStats:
        distribution = {t: 0 for t in MemoryType}
        if not ranked:
            return ContextMatchStats(memory_type_distribution=distribution)

        for rm in ranked:
            distribution[rm.memory.type] += 1

        return ContextMatchStats(
            exact_vendor_matches=sum(1 for rm in ranked if rm.context_match.vendor_match),
            pattern_matches=sum(1 for rm in ranked if rm.context_match.pattern_match),
            language_matches=sum(1 for rm in ranked if rm.context_match.language_match),
            average_similarity=sum(rm.context_match.similarity_score for rm in ranked) / len(ranked),
            memory_type_distribution=distribution,
        )

    @staticmethod
    def _recall_reasoning(
        ranked: Sequence[RankedMemory],
        total_considered: int,
        filtered_out: int,
        conflicts: Sequence[MemoryConflict],
        context: MemoryContext,
    ) -> str:
        parts = [
            f"Considered {total_considered} memories, filtered out {filtered_out}",
            f"Returned {len(ranked)} relevant memories",
        ]
        if context.vendor_id:
            vendor_matches = sum(1 for rm in ranked if rm.context_match.vendor_match)
            parts.append(f"{vendor_matches} exact vendor matches for {context.vendor_id}")
        if conflicts:
            parts.append(f"Resolved {len(conflicts)} memory conflicts")
        if ranked:
            average = sum(rm.ranking_score for rm in ranked) / len(ranked)
            parts.append(f"Average ranking score: {average:.3f}")
        return '. '.join(parts) + '.'
