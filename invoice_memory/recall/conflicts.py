"""
Memory Conflict Resolution

Recalled memories can disagree: two vendor memories mapping the same field,
two corrections rewriting the same target field, two resolutions of the same
discrepancy with different actions, or a vendor-specific memory competing
with a generic one.

Detectors:
1. Field mapping - vendor memories grouped by "source->target"
2. Correction - correction memories grouped by target field
3. Resolution - resolution memories grouped by discrepancy type, flagged
   only when the group holds more than one distinct action
4. Vendor vs generic - shared (type, pattern type); vendor-specific wins

Each conflict is settled by a strategy. Ties keep the earliest memory in
input order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Tuple

from loguru import logger

from ..memory.types import (
    ConflictResolutionStrategy,
    CorrectionPayload,
    Memory,
    MemoryContext,
    MemoryType,
    ResolutionPayload,
    VendorPayload,
    ensure_utc,
)


class ConflictType(Enum):
    FIELD_MAPPING_CONFLICT = 'field_mapping_conflict'
    CORRECTION_CONFLICT = 'correction_conflict'
    RESOLUTION_CONFLICT = 'resolution_conflict'
    VENDOR_GENERIC_CONFLICT = 'vendor_generic_conflict'


@dataclass(frozen=True)
class MemoryConflict:
    """A detected conflict and the memory chosen to settle it."""
    conflict_type: ConflictType
    conflicting_memories: Tuple[Memory, ...]
    resolved_memory: Memory
    resolution_strategy: ConflictResolutionStrategy
    resolution_reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conflict_type': self.conflict_type.value,
            'conflicting_memory_ids': [m.id for m in self.conflicting_memories],
            'resolved_memory_id': self.resolved_memory.id,
            'resolution_strategy': self.resolution_strategy.value,
            'resolution_reasoning': self.resolution_reasoning,
        }


# ============================================================================
# Strategies
# ============================================================================

def _first_max(memories: Sequence[Memory], key: Callable[[Memory], Any]) -> Memory:
    """Memory with the largest key; strictly greater replaces, so ties keep the first."""
    best = memories[0]
    for memory in memories[1:]:
        if key(memory) > key(best):
            best = memory
    return best


def _highest_confidence(memories: Sequence[Memory], context: MemoryContext) -> Memory:
    return _first_max(memories, lambda m: m.confidence)


def _most_recent(memories: Sequence[Memory], context: MemoryContext) -> Memory:
    return _first_max(memories, lambda m: ensure_utc(m.last_used))


def _most_used(memories: Sequence[Memory], context: MemoryContext) -> Memory:
    return _first_max(memories, lambda m: m.usage_count)


def _vendor_priority(memories: Sequence[Memory], context: MemoryContext) -> Memory:
    for memory in memories:
        if memory.matches_vendor(context.vendor_id):
            return memory
    return memories[0]


_STRATEGIES: Dict[ConflictResolutionStrategy, Callable[[Sequence[Memory], MemoryContext], Memory]] = {
    ConflictResolutionStrategy.HIGHEST_CONFIDENCE: _highest_confidence,
    ConflictResolutionStrategy.MOST_RECENT: _most_recent,
    ConflictResolutionStrategy.MOST_USED: _most_used,
    ConflictResolutionStrategy.VENDOR_PRIORITY: _vendor_priority,
    # No true combination yet: behaves as highest confidence
    ConflictResolutionStrategy.WEIGHTED_COMBINATION: _highest_confidence,
}


def select_by_strategy(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
) -> Memory:
    """
    Pick one memory out of a conflicting group.

    Raises:
        ValueError: memories is empty
    """
    if not memories:
        raise ValueError("Cannot resolve a conflict without memories")
    return _STRATEGIES[strategy](memories, context)


# ============================================================================
# Detectors
# ============================================================================

def _group_conflicts(
    groups: Dict[Any, List[Memory]],
    conflict_type: ConflictType,
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
    describe: Callable[[Any], str],
) -> List[MemoryConflict]:
    conflicts = []
    for key, members in groups.items():
        if len(members) < 2:
            continue
        conflicts.append(MemoryConflict(
            conflict_type=conflict_type,
            conflicting_memories=tuple(members),
            resolved_memory=select_by_strategy(members, context, strategy),
            resolution_strategy=strategy,
            resolution_reasoning=f"{describe(key)}, resolved using {strategy.value} strategy",
        ))
    return conflicts


def detect_field_mapping_conflicts(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
) -> List[MemoryConflict]:
    groups: Dict[str, List[Memory]] = {}
    for memory in memories:
        if memory.type != MemoryType.VENDOR:
            continue
        payload: VendorPayload = memory.payload
        for mapping in payload.field_mappings:
            key = f"{mapping.source_field}->{mapping.target_field}"
            members = groups.setdefault(key, [])
            if all(m.id != memory.id for m in members):
                members.append(memory)

    return _group_conflicts(
        groups, ConflictType.FIELD_MAPPING_CONFLICT, context, strategy,
        lambda key: f"Multiple field mappings for {key}",
    )


def detect_correction_conflicts(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
) -> List[MemoryConflict]:
    groups: Dict[str, List[Memory]] = {}
    for memory in memories:
        if memory.type != MemoryType.CORRECTION:
            continue
        payload: CorrectionPayload = memory.payload
        groups.setdefault(payload.correction_action.target_field, []).append(memory)

    return _group_conflicts(
        groups, ConflictType.CORRECTION_CONFLICT, context, strategy,
        lambda field_name: f"Multiple corrections for field {field_name}",
    )


def detect_resolution_conflicts(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
) -> List[MemoryConflict]:
    groups: Dict[str, List[Memory]] = {}
    for memory in memories:
        if memory.type != MemoryType.RESOLUTION:
            continue
        payload: ResolutionPayload = memory.payload
        groups.setdefault(payload.discrepancy_type.value, []).append(memory)

    # Same action repeated is agreement, not conflict
    disputed = {
        key: members for key, members in groups.items()
        if len({m.payload.resolution_outcome.resolution_action for m in members}) > 1
    }
    return _group_conflicts(
        disputed, ConflictType.RESOLUTION_CONFLICT, context, strategy,
        lambda discrepancy: f"Conflicting resolutions for {discrepancy}",
    )


def detect_vendor_generic_conflicts(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy,
) -> List[MemoryConflict]:
    """
    Vendor-specific memories against everything else.

    Flagged only when both sides share a (type, pattern type) pair. The
    winner is chosen among the vendor-specific memories with the configured
    strategy; the conflict is always reported as VENDOR_PRIORITY.
    """
    vendor_specific = [m for m in memories if m.matches_vendor(context.vendor_id)]
    generic = [m for m in memories if not m.matches_vendor(context.vendor_id)]
    if not vendor_specific or not generic:
        return []

    vendor_keys = {(m.type, m.pattern.pattern_type) for m in vendor_specific}
    overlapping = [m for m in generic if (m.type, m.pattern.pattern_type) in vendor_keys]
    if not overlapping:
        return []

    return [MemoryConflict(
        conflict_type=ConflictType.VENDOR_GENERIC_CONFLICT,
        conflicting_memories=tuple(vendor_specific + generic),
        resolved_memory=select_by_strategy(vendor_specific, context, strategy),
        resolution_strategy=ConflictResolutionStrategy.VENDOR_PRIORITY,
        resolution_reasoning='Vendor-specific memories take priority over generic memories',
    )]


def resolve_conflicts(
    memories: Sequence[Memory],
    context: MemoryContext,
    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.HIGHEST_CONFIDENCE,
) -> List[MemoryConflict]:
    """Run all four detectors, in a fixed order."""
    conflicts: List[MemoryConflict] = []
    conflicts.extend(detect_field_mapping_conflicts(memories, context, strategy))
    conflicts.extend(detect_correction_conflicts(memories, context, strategy))
    conflicts.extend(detect_resolution_conflicts(memories, context, strategy))
    conflicts.extend(detect_vendor_generic_conflicts(memories, context, strategy))

    if conflicts:
        logger.debug(
            f"Resolved {len(conflicts)} conflicts: "
            f"{', '.join(c.conflict_type.value for c in conflicts)}"
        )
    return conflicts
