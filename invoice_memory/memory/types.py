"""
Memory Data Model

A memory is a learned correction pattern: a vendor's field layout, a
correction a human applied, or the way a discrepancy was resolved.

Representation:
- One Memory record for every variant
- `type` is the discriminator, `payload` carries the variant data
- Records are immutable snapshots; confidence updates produce new records

Boundary rules:
- Out-of-range values are rejected with MemoryValidationError
- Nothing is silently clamped on construction
- Naive timestamps are read as UTC
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar, Union

from loguru import logger

from ..errors import MemoryValidationError

E = TypeVar('E', bound=Enum)

MS_PER_DAY = 1000 * 60 * 60 * 24
SECONDS_PER_DAY = 60 * 60 * 24


# ============================================================================
# Time helpers
# ============================================================================

def utc_now() -> datetime:
    """Default clock for the core."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from `earlier` to `later`."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return delta.total_seconds() / SECONDS_PER_DAY


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse a datetime or ISO-8601 string."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError as e:
            raise MemoryValidationError(
                f"{field_name} is not an ISO-8601 timestamp: {value!r}",
                field_name=field_name,
                value=value,
            ) from e
    raise MemoryValidationError(
        f"{field_name} must be a datetime or ISO string, got {type(value).__name__}",
        field_name=field_name,
        value=value,
    )


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    """Parse an enum member from itself, its value or its name."""
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if value == member.value or (isinstance(value, str) and value.upper() == member.name):
            return member
    allowed = ', '.join(str(m.value) for m in enum_cls)
    raise MemoryValidationError(
        f"{field_name} must be one of [{allowed}], got {value!r}",
        field_name=field_name,
        value=value,
    )


def require_unit_interval(value: Any, field_name: str) -> float:
    """Check that value is a number in [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MemoryValidationError(
            f"{field_name} must be a number, got {value!r}",
            field_name=field_name,
            value=value,
        )
    if value != value or not 0.0 <= value <= 1.0:  # NaN fails the first test
        raise MemoryValidationError(
            f"{field_name} must be within [0, 1], got {value}",
            field_name=field_name,
            value=value,
        )
    return float(value)


def _require(data: Dict[str, Any], key: str, owner: str) -> Any:
    if key not in data or data[key] is None:
        raise MemoryValidationError(f"{owner} is missing required field '{key}'", field_name=key)
    return data[key]


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


# ============================================================================
# Enums
# ============================================================================

class OrderedEnum(Enum):
    """Enum whose members compare by declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank


class MemoryType(Enum):
    """Discriminator for memory variants."""
    VENDOR = 'vendor'           # Vendor-specific field layout and VAT behavior
    CORRECTION = 'correction'   # Correction learned from human feedback
    RESOLUTION = 'resolution'   # How a discrepancy was resolved


class PatternType(Enum):
    REGEX = 'regex'
    KEYWORD = 'keyword'
    FIELD_MAPPING = 'field_mapping'
    STRUCTURAL = 'structural'
    CONTEXTUAL = 'contextual'


class ComplexityLevel(OrderedEnum):
    SIMPLE = 'simple'
    MODERATE = 'moderate'
    COMPLEX = 'complex'
    VERY_COMPLEX = 'very_complex'


class QualityLevel(OrderedEnum):
    POOR = 'poor'
    FAIR = 'fair'
    GOOD = 'good'
    EXCELLENT = 'excellent'


class RiskLevel(OrderedEnum):
    VERY_LOW = 'very_low'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    VERY_HIGH = 'very_high'


class ConflictResolutionStrategy(Enum):
    HIGHEST_CONFIDENCE = 'highest_confidence'
    MOST_RECENT = 'most_recent'
    MOST_USED = 'most_used'
    VENDOR_PRIORITY = 'vendor_priority'
    WEIGHTED_COMBINATION = 'weighted_combination'  # Falls back to highest confidence


class CorrectionType(Enum):
    QUANTITY_CORRECTION = 'quantity_correction'
    PRICE_CORRECTION = 'price_correction'
    DATE_CORRECTION = 'date_correction'
    CURRENCY_CORRECTION = 'currency_correction'
    VAT_CORRECTION = 'vat_correction'
    FIELD_MAPPING_CORRECTION = 'field_mapping_correction'


class ConditionOperator(Enum):
    EQUALS = 'equals'
    NOT_EQUALS = 'not_equals'
    GREATER_THAN = 'greater_than'
    LESS_THAN = 'less_than'
    CONTAINS = 'contains'
    MATCHES_REGEX = 'matches_regex'
    EXISTS = 'exists'
    NOT_EXISTS = 'not_exists'


class CorrectionActionType(Enum):
    SET_VALUE = 'set_value'
    MULTIPLY_BY = 'multiply_by'
    ADD_VALUE = 'add_value'
    REPLACE_TEXT = 'replace_text'
    APPLY_TRANSFORMATION = 'apply_transformation'


class DiscrepancyType(Enum):
    QUANTITY_MISMATCH = 'quantity_mismatch'
    PRICE_DISCREPANCY = 'price_discrepancy'
    DATE_INCONSISTENCY = 'date_inconsistency'
    CURRENCY_MISMATCH = 'currency_mismatch'
    VAT_CALCULATION_ERROR = 'vat_calculation_error'
    MISSING_FIELD = 'missing_field'
    DUPLICATE_INVOICE = 'duplicate_invoice'


class ResolutionAction(Enum):
    APPROVE_AS_IS = 'approve_as_is'
    APPLY_CORRECTION = 'apply_correction'
    ESCALATE_TO_HUMAN = 'escalate_to_human'
    REJECT_INVOICE = 'reject_invoice'
    REQUEST_CLARIFICATION = 'request_clarification'


class HumanDecisionType(Enum):
    APPROVE = 'approve'
    REJECT = 'reject'
    MODIFY = 'modify'
    ESCALATE = 'escalate'
    DEFER = 'defer'


# ============================================================================
# Pattern and context
# ============================================================================

@dataclass(frozen=True)
class MemoryPattern:
    """When a memory applies: pattern kind, opaque data, apply threshold."""
    pattern_type: PatternType
    pattern_data: Dict[str, Any] = field(default_factory=dict)
    threshold: float = 0.5

    def __post_init__(self):
        require_unit_interval(self.threshold, 'pattern.threshold')

    @property
    def serialized_size(self) -> int:
        """Length of the JSON-serialized pattern data."""
        return len(json.dumps(self.pattern_data, separators=(',', ':'), default=str))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern_type': self.pattern_type.value,
            'pattern_data': self.pattern_data,
            'threshold': self.threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryPattern':
        return cls(
            pattern_type=parse_enum(PatternType, _require(data, 'pattern_type', 'pattern'), 'pattern.pattern_type'),
            pattern_data=dict(data.get('pattern_data') or {}),
            threshold=data.get('threshold', 0.5),
        )


@dataclass(frozen=True)
class InvoiceCharacteristics:
    """Invoice traits used for context matching."""
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    language: str = 'en'
    document_format: str = 'pdf'
    extraction_quality: QualityLevel = QualityLevel.GOOD

    def to_dict(self) -> Dict[str, Any]:
        return {
            'complexity': self.complexity.value,
            'language': self.language,
            'document_format': self.document_format,
            'extraction_quality': self.extraction_quality.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvoiceCharacteristics':
        return cls(
            complexity=parse_enum(ComplexityLevel, data.get('complexity', 'moderate'), 'complexity'),
            language=data.get('language', 'en'),
            document_format=data.get('document_format', 'pdf'),
            extraction_quality=parse_enum(
                QualityLevel, data.get('extraction_quality', 'good'), 'extraction_quality'
            ),
        )


@dataclass(frozen=True)
class MemoryContext:
    """
    Context a memory was learned in, or the context of the current invoice.

    `vendor_id` is None for generic memories.
    """
    vendor_id: Optional[str] = None
    invoice_characteristics: InvoiceCharacteristics = field(default_factory=InvoiceCharacteristics)
    historical_factors: Dict[str, Any] = field(default_factory=dict)
    environmental_factors: Tuple[Dict[str, Any], ...] = ()

    @property
    def language(self) -> str:
        return self.invoice_characteristics.language

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_id': self.vendor_id,
            'invoice_characteristics': self.invoice_characteristics.to_dict(),
            'historical_factors': self.historical_factors,
            'environmental_factors': list(self.environmental_factors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryContext':
        return cls(
            vendor_id=data.get('vendor_id'),
            invoice_characteristics=InvoiceCharacteristics.from_dict(
                data.get('invoice_characteristics') or {}
            ),
            historical_factors=dict(data.get('historical_factors') or {}),
            environmental_factors=tuple(data.get('environmental_factors') or ()),
        )


# ============================================================================
# Vendor payload
# ============================================================================

@dataclass(frozen=True)
class FieldMapping:
    """Mapping from a vendor's field name to the standard field name."""
    source_field: str
    target_field: str
    confidence: float = 0.5
    transformation_rule: Optional[Dict[str, Any]] = None
    examples: Tuple[Dict[str, str], ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source_field, self.target_field)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_field': self.source_field,
            'target_field': self.target_field,
            'confidence': self.confidence,
            'transformation_rule': self.transformation_rule,
            'examples': list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldMapping':
        return cls(
            source_field=_require(data, 'source_field', 'field mapping'),
            target_field=_require(data, 'target_field', 'field mapping'),
            confidence=require_unit_interval(data.get('confidence', 0.5), 'field_mapping.confidence'),
            transformation_rule=data.get('transformation_rule'),
            examples=tuple(data.get('examples') or ()),
        )


@dataclass(frozen=True)
class VATBehavior:
    vat_included_in_prices: bool = False
    default_vat_rate: Optional[float] = None
    vat_inclusion_indicators: Tuple[str, ...] = ()
    vat_exclusion_indicators: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vat_included_in_prices': self.vat_included_in_prices,
            'default_vat_rate': self.default_vat_rate,
            'vat_inclusion_indicators': list(self.vat_inclusion_indicators),
            'vat_exclusion_indicators': list(self.vat_exclusion_indicators),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VATBehavior':
        return cls(
            vat_included_in_prices=bool(data.get('vat_included_in_prices', False)),
            default_vat_rate=data.get('default_vat_rate'),
            vat_inclusion_indicators=tuple(data.get('vat_inclusion_indicators') or ()),
            vat_exclusion_indicators=tuple(data.get('vat_exclusion_indicators') or ()),
        )


@dataclass(frozen=True)
class CurrencyPattern:
    pattern: str                # Regex source
    currency_code: str
    confidence: float = 0.5
    context: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern': self.pattern,
            'currency_code': self.currency_code,
            'confidence': self.confidence,
            'context': self.context,
        }


@dataclass(frozen=True)
class DateFormat:
    format: str                 # e.g. "DD.MM.YYYY"
    pattern: str = ''           # Regex source
    confidence: float = 0.5
    examples: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'format': self.format,
            'pattern': self.pattern,
            'confidence': self.confidence,
            'examples': list(self.examples),
        }


@dataclass(frozen=True)
class VendorPayload:
    """Vendor-specific field layout, VAT, currency and date conventions."""
    vendor_id: str
    field_mappings: Tuple[FieldMapping, ...] = ()
    vat_behavior: VATBehavior = field(default_factory=VATBehavior)
    currency_patterns: Tuple[CurrencyPattern, ...] = ()
    date_formats: Tuple[DateFormat, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor_id': self.vendor_id,
            'field_mappings': [m.to_dict() for m in self.field_mappings],
            'vat_behavior': self.vat_behavior.to_dict(),
            'currency_patterns': [p.to_dict() for p in self.currency_patterns],
            'date_formats': [f.to_dict() for f in self.date_formats],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VendorPayload':
        return cls(
            vendor_id=_require(data, 'vendor_id', 'vendor payload'),
            field_mappings=tuple(FieldMapping.from_dict(m) for m in data.get('field_mappings') or ()),
            vat_behavior=VATBehavior.from_dict(data.get('vat_behavior') or {}),
            currency_patterns=tuple(
                CurrencyPattern(
                    pattern=p.get('pattern', ''),
                    currency_code=_require(p, 'currency_code', 'currency pattern'),
                    confidence=p.get('confidence', 0.5),
                    context=p.get('context', ''),
                )
                for p in data.get('currency_patterns') or ()
            ),
            date_formats=tuple(
                DateFormat(
                    format=_require(f, 'format', 'date format'),
                    pattern=f.get('pattern', ''),
                    confidence=f.get('confidence', 0.5),
                    examples=tuple(f.get('examples') or ()),
                )
                for f in data.get('date_formats') or ()
            ),
        )


# ============================================================================
# Correction payload
# ============================================================================

@dataclass(frozen=True)
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None
    context: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'operator': self.operator.value,
            'value': self.value,
            'context': self.context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Condition':
        return cls(
            field=_require(data, 'field', 'condition'),
            operator=parse_enum(ConditionOperator, _require(data, 'operator', 'condition'), 'condition.operator'),
            value=data.get('value'),
            context=data.get('context'),
        )


@dataclass(frozen=True)
class CorrectionAction:
    action_type: CorrectionActionType
    target_field: str
    new_value: Any = None
    explanation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action_type': self.action_type.value,
            'target_field': self.target_field,
            'new_value': self.new_value,
            'explanation': self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CorrectionAction':
        return cls(
            action_type=parse_enum(
                CorrectionActionType, _require(data, 'action_type', 'correction action'), 'correction_action.action_type'
            ),
            target_field=_require(data, 'target_field', 'correction action'),
            new_value=data.get('new_value'),
            explanation=data.get('explanation'),
        )


@dataclass(frozen=True)
class CorrectionPayload:
    """A correction learned from human feedback and the conditions that trigger it."""
    correction_type: CorrectionType
    correction_action: CorrectionAction
    trigger_conditions: Tuple[Condition, ...] = ()
    validation_rules: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'correction_type': self.correction_type.value,
            'correction_action': self.correction_action.to_dict(),
            'trigger_conditions': [c.to_dict() for c in self.trigger_conditions],
            'validation_rules': list(self.validation_rules),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CorrectionPayload':
        return cls(
            correction_type=parse_enum(
                CorrectionType, _require(data, 'correction_type', 'correction payload'), 'correction_type'
            ),
            correction_action=CorrectionAction.from_dict(
                _require(data, 'correction_action', 'correction payload')
            ),
            trigger_conditions=tuple(Condition.from_dict(c) for c in data.get('trigger_conditions') or ()),
            validation_rules=tuple(data.get('validation_rules') or ()),
        )


# ============================================================================
# Resolution payload
# ============================================================================

@dataclass(frozen=True)
class ResolutionOutcome:
    resolution_action: ResolutionAction
    resolved: bool = True
    final_value: Any = None
    explanation: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resolution_action': self.resolution_action.value,
            'resolved': self.resolved,
            'final_value': self.final_value,
            'explanation': self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResolutionOutcome':
        return cls(
            resolution_action=parse_enum(
                ResolutionAction, _require(data, 'resolution_action', 'resolution outcome'), 'resolution_action'
            ),
            resolved=bool(data.get('resolved', True)),
            final_value=data.get('final_value'),
            explanation=data.get('explanation', ''),
        )


@dataclass(frozen=True)
class HumanDecision:
    decision_type: HumanDecisionType
    user_id: str = 'unknown'
    reasoning: str = ''
    confidence: float = 1.0
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        require_unit_interval(self.confidence, 'human_decision.confidence')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'decision_type': self.decision_type.value,
            'user_id': self.user_id,
            'reasoning': self.reasoning,
            'confidence': self.confidence,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HumanDecision':
        timestamp = data.get('timestamp')
        return cls(
            decision_type=parse_enum(
                HumanDecisionType, _require(data, 'decision_type', 'human decision'), 'human_decision.decision_type'
            ),
            user_id=data.get('user_id', 'unknown'),
            reasoning=data.get('reasoning', ''),
            confidence=data.get('confidence', 1.0),
            timestamp=parse_timestamp(timestamp, 'human_decision.timestamp') if timestamp else None,
        )


@dataclass(frozen=True)
class ContextFactor:
    factor_type: str            # vendor_history, invoice_amount, ...
    value: Any = None
    weight: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {'factor_type': self.factor_type, 'value': self.value, 'weight': self.weight}


@dataclass(frozen=True)
class ResolutionPayload:
    """How a human resolved a discrepancy, and what influenced the decision."""
    discrepancy_type: DiscrepancyType
    resolution_outcome: ResolutionOutcome
    human_decision: HumanDecision
    context_factors: Tuple[ContextFactor, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'discrepancy_type': self.discrepancy_type.value,
            'resolution_outcome': self.resolution_outcome.to_dict(),
            'human_decision': self.human_decision.to_dict(),
            'context_factors': [f.to_dict() for f in self.context_factors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResolutionPayload':
        return cls(
            discrepancy_type=parse_enum(
                DiscrepancyType, _require(data, 'discrepancy_type', 'resolution payload'), 'discrepancy_type'
            ),
            resolution_outcome=ResolutionOutcome.from_dict(
                _require(data, 'resolution_outcome', 'resolution payload')
            ),
            human_decision=HumanDecision.from_dict(_require(data, 'human_decision', 'resolution payload')),
            context_factors=tuple(
                ContextFactor(
                    factor_type=_require(f, 'factor_type', 'context factor'),
                    value=f.get('value'),
                    weight=f.get('weight', 0.0),
                )
                for f in data.get('context_factors') or ()
            ),
        )


MemoryPayload = Union[VendorPayload, CorrectionPayload, ResolutionPayload]

PAYLOAD_TYPES: Dict[MemoryType, type] = {
    MemoryType.VENDOR: VendorPayload,
    MemoryType.CORRECTION: CorrectionPayload,
    MemoryType.RESOLUTION: ResolutionPayload,
}

_PAYLOAD_PARSERS: Dict[MemoryType, Callable[[Dict[str, Any]], MemoryPayload]] = {
    MemoryType.VENDOR: VendorPayload.from_dict,
    MemoryType.CORRECTION: CorrectionPayload.from_dict,
    MemoryType.RESOLUTION: ResolutionPayload.from_dict,
}


# ============================================================================
# Memory
# ============================================================================

@dataclass(frozen=True)
class Memory:
    """
    A learned correction pattern.

    Immutable: the confidence manager returns updated copies instead of
    mutating shared records, so concurrent requests can hold the same
    snapshot safely.
    """
    id: str
    type: MemoryType
    payload: MemoryPayload
    pattern: MemoryPattern
    confidence: float
    created_at: datetime
    last_used: datetime
    context: MemoryContext = field(default_factory=MemoryContext)
    usage_count: int = 0
    success_rate: float = 0.0

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id.strip():
            raise MemoryValidationError("Memory id must be a non-empty string", field_name='id', value=self.id)
        if not isinstance(self.type, MemoryType):
            raise MemoryValidationError(
                f"Memory {self.id}: type must be a MemoryType", field_name='type', value=self.type
            )
        expected = PAYLOAD_TYPES[self.type]
        if not isinstance(self.payload, expected):
            raise MemoryValidationError(
                f"Memory {self.id}: {self.type.value} memory needs a {expected.__name__}, "
                f"got {type(self.payload).__name__}",
                field_name='payload',
                value=self.payload,
            )
        require_unit_interval(self.confidence, 'confidence')
        require_unit_interval(self.success_rate, 'success_rate')
        if isinstance(self.usage_count, bool) or not isinstance(self.usage_count, int) or self.usage_count < 0:
            raise MemoryValidationError(
                f"Memory {self.id}: usage_count must be a non-negative integer",
                field_name='usage_count',
                value=self.usage_count,
            )
        if not isinstance(self.created_at, datetime) or not isinstance(self.last_used, datetime):
            raise MemoryValidationError(
                f"Memory {self.id}: created_at and last_used must be datetimes", field_name='created_at'
            )
        if ensure_utc(self.last_used) < ensure_utc(self.created_at):
            raise MemoryValidationError(
                f"Memory {self.id}: last_used precedes created_at",
                field_name='last_used',
                value=self.last_used,
            )

    @property
    def vendor_id(self) -> Optional[str]:
        """Vendor the memory was learned for (None for generic memories)."""
        return self.context.vendor_id

    @property
    def is_vendor_specific(self) -> bool:
        return bool(self.context.vendor_id)

    def matches_vendor(self, vendor_id: Optional[str]) -> bool:
        """True when vendor_id is set and equals the memory's vendor."""
        return bool(vendor_id) and self.context.vendor_id == vendor_id

    def with_updates(self, **changes: Any) -> 'Memory':
        """Return a validated copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'type': self.type.value,
            'payload': self.payload.to_dict(),
            'pattern': self.pattern.to_dict(),
            'confidence': round(self.confidence, 6),
            'created_at': ensure_utc(self.created_at).isoformat(),
            'last_used': ensure_utc(self.last_used).isoformat(),
            'context': self.context.to_dict(),
            'usage_count': self.usage_count,
            'success_rate': round(self.success_rate, 6),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Memory':
        """
        Build a memory from a plain dict (YAML/JSON fixture or store row).

        Raises:
            MemoryValidationError: on missing or out-of-range fields
        """
        if not isinstance(data, dict):
            raise MemoryValidationError(f"Memory record must be a mapping, got {type(data).__name__}")

        memory_id = _require(data, 'id', 'memory')
        memory_type = parse_enum(MemoryType, _require(data, 'type', f"memory {memory_id}"), 'type')
        payload = _PAYLOAD_PARSERS[memory_type](_require(data, 'payload', f"memory {memory_id}"))
        created_at = parse_timestamp(_require(data, 'created_at', f"memory {memory_id}"), 'created_at')
        last_used = parse_timestamp(data.get('last_used', created_at), 'last_used')

        memory = cls(
            id=memory_id,
            type=memory_type,
            payload=payload,
            pattern=MemoryPattern.from_dict(_require(data, 'pattern', f"memory {memory_id}")),
            confidence=_require(data, 'confidence', f"memory {memory_id}"),
            created_at=created_at,
            last_used=last_used,
            context=MemoryContext.from_dict(data.get('context') or {}),
            usage_count=data.get('usage_count', 0),
            success_rate=data.get('success_rate', 0.0),
        )
        logger.debug(f"Loaded {memory.type.value} memory {memory.id}")
        return memory
