"""
Tests for conflict detection and resolution strategies.
"""

import pytest

from invoice_memory.memory import ConflictResolutionStrategy, DiscrepancyType, ResolutionAction
from invoice_memory.recall.conflicts import (
    ConflictType,
    detect_correction_conflicts,
    detect_field_mapping_conflicts,
    detect_resolution_conflicts,
    detect_vendor_generic_conflicts,
    resolve_conflicts,
    select_by_strategy,
)

from helpers import make_context, make_correction_memory, make_resolution_memory, make_vendor_memory


class TestStrategies:
    """Tests for select_by_strategy."""

    def setup_method(self):
        self.context = make_context('acme')
        self.a = make_correction_memory('a', confidence=0.6, usage_count=10, idle_days=5)
        self.b = make_correction_memory('b', confidence=0.9, usage_count=2, idle_days=20)
        self.c = make_correction_memory('c', confidence=0.7, usage_count=4, idle_days=1, vendor_id='acme')
        self.memories = [self.a, self.b, self.c]

    def test_highest_confidence(self):
        assert select_by_strategy(self.memories, self.context, ConflictResolutionStrategy.HIGHEST_CONFIDENCE) is self.b

    def test_most_recent(self):
        assert select_by_strategy(self.memories, self.context, ConflictResolutionStrategy.MOST_RECENT) is self.c

    def test_most_used(self):
        assert select_by_strategy(self.memories, self.context, ConflictResolutionStrategy.MOST_USED) is self.a

    def test_vendor_priority(self):
        assert select_by_strategy(self.memories, self.context, ConflictResolutionStrategy.VENDOR_PRIORITY) is self.c

    def test_vendor_priority_without_match_takes_first(self):
        result = select_by_strategy(
            self.memories, make_context('globex'), ConflictResolutionStrategy.VENDOR_PRIORITY
        )
        assert result is self.a

    def test_weighted_combination_behaves_as_highest_confidence(self):
        assert select_by_strategy(
            self.memories, self.context, ConflictResolutionStrategy.WEIGHTED_COMBINATION
        ) is self.b

    def test_tie_keeps_first(self):
        first = make_correction_memory('first', confidence=0.8)
        second = make_correction_memory('second', confidence=0.8)
        assert select_by_strategy(
            [first, second], self.context, ConflictResolutionStrategy.HIGHEST_CONFIDENCE
        ) is first

    def test_empty_group(self):
        with pytest.raises(ValueError):
            select_by_strategy([], self.context, ConflictResolutionStrategy.HIGHEST_CONFIDENCE)


class TestDetectors:
    """Tests for the four conflict detectors."""

    def setup_method(self):
        self.context = make_context('acme')
        self.strategy = ConflictResolutionStrategy.HIGHEST_CONFIDENCE

    def test_field_mapping_conflict(self):
        first = make_vendor_memory('v1', confidence=0.7, mappings=(('Nr', 'invoice_number'),))
        second = make_vendor_memory('v2', confidence=0.9, mappings=(('Nr', 'invoice_number'), ('Sum', 'total')))
        conflicts = detect_field_mapping_conflicts([first, second], self.context, self.strategy)

        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == ConflictType.FIELD_MAPPING_CONFLICT
        assert conflicts[0].resolved_memory is second
        assert conflicts[0].resolution_reasoning == (
            'Multiple field mappings for Nr->invoice_number, resolved using highest_confidence strategy'
        )

    def test_repeated_mapping_in_one_memory_is_not_a_conflict(self):
        memory = make_vendor_memory('v1', mappings=(('Nr', 'invoice_number'), ('Nr', 'invoice_number')))
        assert detect_field_mapping_conflicts([memory], self.context, self.strategy) == []

    def test_correction_conflict(self):
        quantity_a = make_correction_memory('q1', target_field='quantity', confidence=0.5)
        quantity_b = make_correction_memory('q2', target_field='quantity', confidence=0.6)
        price = make_correction_memory('p1', target_field='unit_price')
        conflicts = detect_correction_conflicts([quantity_a, price, quantity_b], self.context, self.strategy)

        assert len(conflicts) == 1
        assert [m.id for m in conflicts[0].conflicting_memories] == ['q1', 'q2']
        assert conflicts[0].resolved_memory is quantity_b

    def test_resolution_conflict_needs_different_actions(self):
        approve = make_resolution_memory('r1', action=ResolutionAction.APPROVE_AS_IS)
        also_approve = make_resolution_memory('r2', action=ResolutionAction.APPROVE_AS_IS)
        assert detect_resolution_conflicts([approve, also_approve], self.context, self.strategy) == []

        reject = make_resolution_memory('r3', action=ResolutionAction.REJECT_INVOICE, confidence=0.95)
        conflicts = detect_resolution_conflicts([approve, also_approve, reject], self.context, self.strategy)
        assert len(conflicts) == 1
        assert conflicts[0].resolved_memory is reject
        assert 'quantity_mismatch' in conflicts[0].resolution_reasoning

    def test_resolution_groups_by_discrepancy(self):
        quantity = make_resolution_memory('r1', action=ResolutionAction.APPROVE_AS_IS)
        price = make_resolution_memory(
            'r2', discrepancy=DiscrepancyType.PRICE_DISCREPANCY, action=ResolutionAction.REJECT_INVOICE,
        )
        assert detect_resolution_conflicts([quantity, price], self.context, self.strategy) == []

    def test_vendor_generic_conflict(self):
        specific = make_correction_memory('specific', vendor_id='acme', confidence=0.6)
        generic = make_correction_memory('generic', vendor_id=None, confidence=0.95)
        conflicts = detect_vendor_generic_conflicts([generic, specific], self.context, self.strategy)

        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.resolved_memory is specific
        assert conflict.resolution_strategy == ConflictResolutionStrategy.VENDOR_PRIORITY
        assert [m.id for m in conflict.conflicting_memories] == ['specific', 'generic']

    def test_vendor_generic_requires_shared_pattern(self):
        specific = make_vendor_memory('specific', vendor_id='acme')
        generic = make_correction_memory('generic', vendor_id=None)
        assert detect_vendor_generic_conflicts([specific, generic], self.context, self.strategy) == []

    def test_no_vendor_in_context(self):
        specific = make_correction_memory('specific', vendor_id='acme')
        generic = make_correction_memory('generic', vendor_id=None)
        assert detect_vendor_generic_conflicts([specific, generic], make_context(None), self.strategy) == []


class TestResolveConflicts:

    def test_detector_order(self):
        context = make_context('acme')
        memories = [
            make_vendor_memory('v1', mappings=(('Nr', 'invoice_number'),)),
            make_vendor_memory('v2', mappings=(('Nr', 'invoice_number'),)),
            make_correction_memory('c1', vendor_id='acme'),
            make_correction_memory('c2'),
        ]
        conflicts = resolve_conflicts(memories, context)
        assert [c.conflict_type for c in conflicts] == [
            ConflictType.FIELD_MAPPING_CONFLICT,
            ConflictType.CORRECTION_CONFLICT,
            ConflictType.VENDOR_GENERIC_CONFLICT,
        ]

    def test_no_conflicts(self):
        assert resolve_conflicts([make_vendor_memory()], make_context('acme')) == []

    def test_to_dict(self):
        memories = [make_correction_memory('c1'), make_correction_memory('c2', confidence=0.9)]
        data = resolve_conflicts(memories, make_context('acme'))[0].to_dict()
        assert data['conflicting_memory_ids'] == ['c1', 'c2']
        assert data['resolved_memory_id'] == 'c2'
        assert data['resolution_strategy'] == 'highest_confidence'
