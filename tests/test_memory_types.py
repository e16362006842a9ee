"""
Tests for the memory data model, variant behavior and the in-memory store.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from invoice_memory.errors import MemoryValidationError, StoreUnavailableError
from invoice_memory.memory import (
    ComplexityLevel,
    InMemoryMemoryStore,
    Memory,
    MemoryType,
    PatternType,
    QualityLevel,
    RiskLevel,
    calculate_relevance,
    get_description,
    is_applicable,
    load_memories,
)
from invoice_memory.memory.types import clamp, days_between, ensure_utc

from helpers import (
    NOW,
    make_context,
    make_correction_memory,
    make_resolution_memory,
    make_vendor_memory,
)


VENDOR_RECORD = {
    'id': 'mem-acme',
    'type': 'vendor',
    'confidence': 0.82,
    'created_at': '2024-05-01T08:00:00Z',
    'last_used': '2024-05-30T08:00:00Z',
    'usage_count': 7,
    'success_rate': 0.9,
    'pattern': {'pattern_type': 'field_mapping', 'pattern_data': {'anchor': 'Rechnungsnr.'}},
    'context': {
        'vendor_id': 'acme',
        'invoice_characteristics': {'language': 'de', 'complexity': 'simple'},
    },
    'payload': {
        'vendor_id': 'acme',
        'field_mappings': [{'source_field': 'Rechnungsnr.', 'target_field': 'invoice_number', 'confidence': 0.95}],
        'vat_behavior': {'vat_included_in_prices': True, 'default_vat_rate': 0.19},
        'currency_patterns': [{'pattern': 'EUR', 'currency_code': 'EUR'}],
        'date_formats': [{'format': 'DD.MM.YYYY'}],
    },
}


class TestMemoryValidation:
    """Tests for Memory construction invariants."""

    def test_valid_memory(self):
        memory = make_vendor_memory()
        assert memory.type == MemoryType.VENDOR
        assert memory.vendor_id == 'acme'
        assert memory.is_vendor_specific

    def test_confidence_out_of_range(self):
        with pytest.raises(MemoryValidationError):
            make_vendor_memory(confidence=1.2)

    def test_success_rate_out_of_range(self):
        with pytest.raises(MemoryValidationError):
            make_vendor_memory(success_rate=-0.1)

    def test_negative_usage_count(self):
        with pytest.raises(MemoryValidationError):
            make_vendor_memory(usage_count=-1)

    def test_last_used_before_created(self):
        memory = make_vendor_memory()
        with pytest.raises(MemoryValidationError):
            memory.with_updates(last_used=memory.created_at - timedelta(days=1))

    def test_payload_must_match_type(self):
        vendor = make_vendor_memory()
        with pytest.raises(MemoryValidationError):
            vendor.with_updates(type=MemoryType.CORRECTION)

    def test_memory_is_immutable(self):
        memory = make_vendor_memory()
        with pytest.raises(FrozenInstanceError):
            memory.confidence = 0.1

    def test_matches_vendor_requires_vendor(self):
        generic = make_correction_memory(vendor_id=None)
        assert not generic.matches_vendor(None)
        assert make_vendor_memory(vendor_id='acme').matches_vendor('acme')
        assert not make_vendor_memory(vendor_id='acme').matches_vendor('globex')


class TestMemorySerialization:
    """Tests for Memory.from_dict / to_dict."""

    def test_from_dict(self):
        memory = Memory.from_dict(VENDOR_RECORD)
        assert memory.id == 'mem-acme'
        assert memory.context.language == 'de'
        assert memory.context.invoice_characteristics.complexity == ComplexityLevel.SIMPLE
        assert memory.payload.vat_behavior.default_vat_rate == 0.19
        assert memory.created_at.tzinfo is not None

    def test_to_dict_preserves_fields(self):
        data = Memory.from_dict(VENDOR_RECORD).to_dict()
        assert data['type'] == 'vendor'
        assert data['payload']['field_mappings'][0]['target_field'] == 'invoice_number'
        assert Memory.from_dict(data) == Memory.from_dict(VENDOR_RECORD)

    def test_missing_required_field(self):
        record = dict(VENDOR_RECORD)
        del record['confidence']
        with pytest.raises(MemoryValidationError) as exc:
            Memory.from_dict(record)
        assert exc.value.field_name == 'confidence'

    def test_unknown_type(self):
        with pytest.raises(MemoryValidationError):
            Memory.from_dict(dict(VENDOR_RECORD, type='unknown'))

    def test_bad_timestamp(self):
        with pytest.raises(MemoryValidationError):
            Memory.from_dict(dict(VENDOR_RECORD, created_at='yesterday'))

    def test_last_used_defaults_to_created(self):
        record = dict(VENDOR_RECORD)
        del record['last_used']
        memory = Memory.from_dict(record)
        assert memory.last_used == memory.created_at


class TestOrderedEnums:

    def test_complexity_order(self):
        assert ComplexityLevel.SIMPLE < ComplexityLevel.MODERATE < ComplexityLevel.VERY_COMPLEX

    def test_quality_order(self):
        assert QualityLevel.EXCELLENT > QualityLevel.GOOD >= QualityLevel.GOOD

    def test_risk_order(self):
        assert RiskLevel.VERY_HIGH > RiskLevel.HIGH > RiskLevel.MEDIUM > RiskLevel.LOW > RiskLevel.VERY_LOW

    def test_cross_enum_comparison_fails(self):
        with pytest.raises(TypeError):
            ComplexityLevel.SIMPLE < QualityLevel.POOR


class TestTimeHelpers:

    def test_naive_is_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_days_between(self):
        assert days_between(NOW - timedelta(days=30), NOW) == pytest.approx(30.0)

    def test_clamp(self):
        assert clamp(1.5) == 1.0
        assert clamp(-0.2) == 0.0
        assert clamp(0.4) == 0.4


class TestVariantBehavior:
    """Tests for per-variant applicability, relevance and descriptions."""

    def test_vendor_applicable_only_for_same_vendor(self):
        memory = make_vendor_memory(vendor_id='acme')
        assert is_applicable(memory, make_context('acme'))
        assert not is_applicable(memory, make_context('globex'))

    def test_vendor_relevance(self):
        memory = make_vendor_memory(vendor_id='acme', confidence=0.8, success_rate=0.9)
        # 0.8 * (0.5 + 0.45) * 1.1 (language) * 1.05 (complexity)
        assert calculate_relevance(memory, make_context('acme')) == pytest.approx(0.8 * 0.95 * 1.1 * 1.05)
        assert calculate_relevance(memory, make_context('globex')) == 0.0

    def test_correction_needs_conditions(self):
        assert is_applicable(make_correction_memory(conditions=2), make_context())
        assert not is_applicable(make_correction_memory(conditions=0), make_context())

    def test_correction_relevance_vendor_boost(self):
        memory = make_correction_memory(vendor_id='acme', confidence=0.5, success_rate=0.5)
        base = 0.5 * (0.3 + 0.35) * 1.1
        assert calculate_relevance(memory, make_context('acme')) == pytest.approx(base * 1.2)
        assert calculate_relevance(memory, make_context('globex')) == pytest.approx(base)

    def test_resolution_threshold_applicability(self):
        assert is_applicable(make_resolution_memory(confidence=0.6, threshold=0.5), make_context())
        assert not is_applicable(make_resolution_memory(confidence=0.4, threshold=0.5), make_context())

    def test_resolution_relevance_factor_boost_capped(self):
        memory = make_resolution_memory(confidence=0.5, human_confidence=1.0, factor_weights=(3.0, 4.0))
        # boost 0.7 capped at 0.5
        assert calculate_relevance(memory, make_context()) == pytest.approx(0.5 * 1.5)

    def test_relevance_capped_at_one(self):
        memory = make_resolution_memory(vendor_id='acme', confidence=1.0, factor_weights=(5.0,))
        assert calculate_relevance(memory, make_context('acme')) == 1.0

    def test_descriptions(self):
        assert get_description(make_vendor_memory()) == (
            "Vendor memory for acme with 1 field mappings and 0 currency patterns"
        )
        assert get_description(make_correction_memory(conditions=2)) == (
            "Correction memory for quantity_correction with 2 conditions"
        )
        assert get_description(make_resolution_memory()) == (
            "Resolution memory for quantity_mismatch resolved as apply_correction"
        )


class TestInMemoryStore:
    """Tests for the dict-backed store."""

    def setup_method(self):
        self.vendor = make_vendor_memory('m1', vendor_id='acme')
        self.correction = make_correction_memory('m2', vendor_id='acme')
        self.resolution = make_resolution_memory('m3')
        self.store = InMemoryMemoryStore([self.vendor, self.correction, self.resolution])

    def test_find_by_vendor_keeps_order(self):
        assert [m.id for m in self.store.find_memories_by_vendor('acme')] == ['m1', 'm2']

    def test_find_by_type(self):
        assert self.store.find_memories_by_type(MemoryType.RESOLUTION) == [self.resolution]

    def test_find_by_pattern(self):
        assert self.store.find_memories_by_pattern(PatternType.KEYWORD) == [self.correction]

    def test_save_replaces_in_place(self):
        self.store.save_memory(self.vendor.with_updates(confidence=0.5))
        assert [m.id for m in self.store.get_all_memories()] == ['m1', 'm2', 'm3']
        assert self.store.get_memory('m1').confidence == 0.5

    def test_duplicate_ids_rejected(self):
        with pytest.raises(MemoryValidationError):
            InMemoryMemoryStore([self.vendor, self.vendor])

    def test_config_values(self):
        assert self.store.get_config_value('escalation_threshold') is None
        self.store.set_config_value('escalation_threshold', 0.65)
        assert self.store.get_config_value('escalation_threshold') == 0.65


class TestLoadMemories:

    def test_load_from_list(self):
        memories = load_memories([VENDOR_RECORD])
        assert [m.id for m in memories] == ['mem-acme']

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / 'memories.yaml'
        path.write_text(
            "memories:\n"
            "  - id: mem-1\n"
            "    type: correction\n"
            "    confidence: 0.6\n"
            "    created_at: 2024-05-01T00:00:00Z\n"
            "    pattern: {pattern_type: keyword}\n"
            "    payload:\n"
            "      correction_type: quantity_correction\n"
            "      correction_action: {action_type: multiply_by, target_field: quantity, new_value: 10}\n"
            "      trigger_conditions:\n"
            "        - {field: unit, operator: equals, value: Stk}\n",
            encoding='utf-8',
        )
        memories = load_memories(path)
        assert len(memories) == 1
        assert memories[0].type == MemoryType.CORRECTION
        assert memories[0].payload.trigger_conditions[0].value == 'Stk'

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreUnavailableError) as exc:
            load_memories(tmp_path / 'missing.yaml')
        assert exc.value.operation == 'load_memories'

    def test_duplicate_ids(self):
        with pytest.raises(MemoryValidationError):
            load_memories([VENDOR_RECORD, VENDOR_RECORD])
