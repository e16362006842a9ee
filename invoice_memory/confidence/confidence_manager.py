"""
Confidence Manager

Scores how far each memory can be trusted and keeps the global escalation
threshold tuned to how the system is performing.

Operations:
- Initial confidence for a freshly learned memory
- Reinforcement from processing outcomes
- Exponential decay for idle memories
- Reliability evaluation with recommendations
- Overall confidence for a set of recalled memories
- Escalation threshold reads and metric-driven adjustment

Memories are never mutated. Scalar operations return the new confidence;
the `apply_*` and `update_confidence` helpers return updated Memory copies.

Usage:
    manager = ConfidenceManager(store)

    new_confidence = manager.reinforce_memory(memory, ProcessingOutcome(
        outcome_type=ProcessingOutcomeType.SUCCESS_AUTO,
    ))
    calc = manager.calculate_overall_confidence(memories, context)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..audit import AuditOperation, AuditTrail, timed
from ..config import ConfidenceConfig
from ..errors import MemoryValidationError
from ..memory.store import ESCALATION_THRESHOLD_KEY, ThresholdStore
from ..memory.types import (
    MS_PER_DAY,
    ComplexityLevel,
    Memory,
    MemoryContext,
    MemoryPattern,
    MemoryType,
    QualityLevel,
    clamp,
    days_between,
    ensure_utc,
    utc_now,
)


# ============================================================================
# Outcomes and metrics
# ============================================================================

class ProcessingOutcomeType(Enum):
    SUCCESS_AUTO = 'success_auto'
    SUCCESS_HUMAN_REVIEW = 'success_human_review'
    FAILED_VALIDATION = 'failed_validation'
    ESCALATED = 'escalated'
    REJECTED = 'rejected'

    @property
    def is_success(self) -> bool:
        return self in (ProcessingOutcomeType.SUCCESS_AUTO, ProcessingOutcomeType.SUCCESS_HUMAN_REVIEW)


@dataclass(frozen=True)
class HumanFeedback:
    user_id: str
    satisfaction_rating: int    # 1..5
    feedback_type: str = 'general'
    comments: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.satisfaction_rating, bool) or not isinstance(self.satisfaction_rating, (int, float)) \
                or not 1 <= self.satisfaction_rating <= 5:
            raise MemoryValidationError(
                f"satisfaction_rating must be within 1..5, got {self.satisfaction_rating!r}",
                field_name='satisfaction_rating',
                value=self.satisfaction_rating,
            )


@dataclass(frozen=True)
class ProcessingOutcome:
    """How processing went for an invoice a memory was applied to."""
    outcome_type: ProcessingOutcomeType
    human_feedback: Optional[HumanFeedback] = None


# Reinforcement as a multiple of max_reinforcement
_REINFORCEMENT_MULTIPLIERS = {
    ProcessingOutcomeType.SUCCESS_AUTO: 1.0,
    ProcessingOutcomeType.SUCCESS_HUMAN_REVIEW: 0.7,
    ProcessingOutcomeType.ESCALATED: -0.5,
    ProcessingOutcomeType.FAILED_VALIDATION: -1.5,
    ProcessingOutcomeType.REJECTED: -2.0,
}

_QUALITY_ADJUSTMENT = {
    QualityLevel.EXCELLENT: 0.10,
    QualityLevel.GOOD: 0.05,
    QualityLevel.FAIR: -0.05,
    QualityLevel.POOR: -0.10,
}

_COMPLEXITY_ADJUSTMENT = {
    ComplexityLevel.SIMPLE: 0.05,
    ComplexityLevel.MODERATE: 0.02,
    ComplexityLevel.COMPLEX: -0.02,
    ComplexityLevel.VERY_COMPLEX: -0.05,
}

_BASE_CONFIDENCE_BY_TYPE = {
    MemoryType.VENDOR: 0.6,
    MemoryType.CORRECTION: 0.4,       # Unvalidated until used
    MemoryType.RESOLUTION: 0.7,       # Backed by a human decision
}

# Escalation threshold bounds used by adjustment
THRESHOLD_FLOOR = 0.3
THRESHOLD_CEILING = 0.9
MIN_THRESHOLD_CHANGE = 0.02

SUCCESS_RATE_SMOOTHING = 0.1


@dataclass
class MemoryMetrics:
    accuracy_rate: float = 1.0
    average_confidence: float = 0.0
    utilization_rate: float = 0.0
    false_positive_rate: float = 0.0
    false_negative_rate: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'accuracy_rate': self.accuracy_rate,
            'average_confidence': self.average_confidence,
            'utilization_rate': self.utilization_rate,
            'false_positive_rate': self.false_positive_rate,
            'false_negative_rate': self.false_negative_rate,
        }


@dataclass
class PerformanceMetrics:
    """Aggregate processing statistics used to tune the escalation threshold."""
    automation_rate: float
    success_rate: float
    human_review_rate: float
    average_processing_time: float = 0.0
    memory_metrics: MemoryMetrics = field(default_factory=MemoryMetrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'automation_rate': self.automation_rate,
            'success_rate': self.success_rate,
            'human_review_rate': self.human_review_rate,
            'average_processing_time': self.average_processing_time,
            'memory_metrics': self.memory_metrics.to_dict(),
        }


# ============================================================================
# Results
# ============================================================================

class ReliabilityClassification(Enum):
    VERY_HIGH = 'very_high'
    HIGH = 'high'
    MODERATE = 'moderate'
    LOW = 'low'
    VERY_LOW = 'very_low'

    @classmethod
    def from_score(cls, score: float) -> 'ReliabilityClassification':
        if score >= 0.9:
            return cls.VERY_HIGH
        if score >= 0.7:
            return cls.HIGH
        if score >= 0.5:
            return cls.MODERATE
        if score >= 0.3:
            return cls.LOW
        return cls.VERY_LOW


class ReliabilityFactorType(Enum):
    SUCCESS_RATE = 'success_rate'
    USAGE_FREQUENCY = 'usage_frequency'
    RECENCY = 'recency'


@dataclass(frozen=True)
class ReliabilityFactor:
    factor_type: ReliabilityFactorType
    impact: float               # -1..1
    description: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'factor_type': self.factor_type.value,
            'impact': round(self.impact, 4),
            'description': self.description,
            'value': round(self.value, 4),
        }


@dataclass(frozen=True)
class ReliabilityScore:
    score: float
    classification: ReliabilityClassification
    factors: Tuple[ReliabilityFactor, ...]
    recommendations: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': round(self.score, 4),
            'classification': self.classification.value,
            'factors': [f.to_dict() for f in self.factors],
            'recommendations': list(self.recommendations),
        }


@dataclass(frozen=True)
class ConfidenceCalculation:
    """Breakdown of the overall confidence for a set of memories."""
    base_confidence: float
    reinforcement_factor: float
    decay_factor: float
    reliability_bonus: float
    contextual_adjustment: float
    final_confidence: float
    reasoning: str

    @classmethod
    def empty(cls) -> 'ConfidenceCalculation':
        return cls(
            base_confidence=0.0,
            reinforcement_factor=0.0,
            decay_factor=0.0,
            reliability_bonus=0.0,
            contextual_adjustment=0.0,
            final_confidence=0.0,
            reasoning='No memories available for confidence calculation',
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base_confidence': round(self.base_confidence, 4),
            'reinforcement_factor': round(self.reinforcement_factor, 4),
            'decay_factor': round(self.decay_factor, 4),
            'reliability_bonus': round(self.reliability_bonus, 4),
            'contextual_adjustment': round(self.contextual_adjustment, 4),
            'final_confidence': round(self.final_confidence, 4),
            'reasoning': self.reasoning,
        }


@dataclass(frozen=True)
class ThresholdAdjustment:
    timestamp: datetime
    previous_threshold: float
    new_threshold: float
    reason: str
    triggering_metrics: PerformanceMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'previous_threshold': self.previous_threshold,
            'new_threshold': self.new_threshold,
            'reason': self.reason,
            'triggering_metrics': self.triggering_metrics.to_dict(),
        }


# ============================================================================
# Manager
# ============================================================================

class ConfidenceManager:
    """
    Computes, reinforces and decays memory confidence.

    The escalation threshold is read and written through the injected
    ThresholdStore; store failures on read fall back to the configured
    default instead of propagating.
    """

    def __init__(
        self,
        threshold_store: ThresholdStore,
        config: Optional[ConfidenceConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.threshold_store = threshold_store
        self.config = config or ConfidenceConfig()
        self.clock = clock or utc_now
        self._adjustments: List[ThresholdAdjustment] = []

    @property
    def threshold_history(self) -> Tuple[ThresholdAdjustment, ...]:
        return tuple(self._adjustments)

    # ------------------------------------------------------------------
    # Per-memory confidence
    # ------------------------------------------------------------------

    def calculate_initial_confidence(self, memory: Memory, trail: Optional[AuditTrail] = None) -> float:
        """
        Initial confidence for a new memory.

        Starts from a per-variant prior, then scales by the quality and
        complexity of the invoice it was learned from and by the size of
        its pattern data.
        """
        with timed() as elapsed:
            confidence = _BASE_CONFIDENCE_BY_TYPE.get(memory.type, self.config.base_confidence)

            context_adjustment = self._context_adjustment(memory.context)
            confidence *= 1 + context_adjustment

            complexity_adjustment = self._pattern_size_adjustment(memory.pattern)
            confidence *= 1 + complexity_adjustment

            confidence = self._bound(confidence)

        if trail is not None:
            trail.record(
                AuditOperation.CONFIDENCE_CALCULATION,
                'Initial confidence calculation',
                input={'memory_id': memory.id, 'memory_type': memory.type.value},
                output={
                    'initial_confidence': confidence,
                    'context_adjustment': context_adjustment,
                    'complexity_adjustment': complexity_adjustment,
                },
                actor='ConfidenceManager',
                duration_ms=elapsed(),
            )
        return confidence

    def reinforce_memory(
        self,
        memory: Memory,
        outcome: ProcessingOutcome,
        trail: Optional[AuditTrail] = None,
    ) -> float:
        """
        New confidence after a processing outcome.

        Successes push confidence up, failures pull it down harder. Human
        feedback scales the step by rating/5, the learning rate scales it
        again.
        """
        with timed() as elapsed:
            reinforcement = self.config.max_reinforcement * _REINFORCEMENT_MULTIPLIERS[outcome.outcome_type]

            if outcome.human_feedback is not None:
                reinforcement *= outcome.human_feedback.satisfaction_rating / 5.0

            reinforcement *= self.config.learning_rate

            new_confidence = self._bound(memory.confidence + reinforcement)
            # A memory already below the floor is never lifted by a failure
            if reinforcement <= 0:
                new_confidence = min(memory.confidence, new_confidence)

        logger.debug(
            f"Reinforced {memory.id} ({outcome.outcome_type.value}): "
            f"{memory.confidence:.4f} -> {new_confidence:.4f}"
        )
        if trail is not None:
            trail.record(
                AuditOperation.CONFIDENCE_CALCULATION,
                'Memory confidence reinforcement',
                input={
                    'memory_id': memory.id,
                    'old_confidence': memory.confidence,
                    'outcome_type': outcome.outcome_type.value,
                    'reinforcement': reinforcement,
                },
                output={'new_confidence': new_confidence},
                actor='ConfidenceManager',
                duration_ms=elapsed(),
            )
        return new_confidence

    def decay_memory(self, memory: Memory, elapsed_ms: float, trail: Optional[AuditTrail] = None) -> float:
        """
        Exponentially decay confidence for idle time.

        Args:
            memory: Memory to decay
            elapsed_ms: Idle time in milliseconds

        Returns:
            max(minimum_confidence, confidence * exp(-days * decay_rate_per_day)),
            never above the current confidence
        """
        if elapsed_ms < 0:
            raise MemoryValidationError(
                f"Elapsed time cannot be negative, got {elapsed_ms}", field_name='elapsed_ms', value=elapsed_ms
            )

        with timed() as elapsed:
            days = elapsed_ms / MS_PER_DAY
            decay_amount = days * self.config.decay_rate_per_day
            decay_factor = math.exp(-decay_amount)
            new_confidence = max(self.config.minimum_confidence, memory.confidence * decay_factor)
            new_confidence = min(memory.confidence, new_confidence)

        if trail is not None:
            trail.record(
                AuditOperation.CONFIDENCE_CALCULATION,
                'Memory confidence decay',
                input={
                    'memory_id': memory.id,
                    'old_confidence': memory.confidence,
                    'days_since_last_use': days,
                    'decay_amount': decay_amount,
                    'decay_factor': decay_factor,
                },
                output={'new_confidence': new_confidence},
                actor='ConfidenceManager',
                duration_ms=elapsed(),
            )
        return new_confidence

    def update_confidence(self, memory: Memory, confidence: float) -> Memory:
        """Copy of the memory with an explicitly set (clamped) confidence."""
        return memory.with_updates(confidence=clamp(confidence))

    def apply_outcome(
        self,
        memory: Memory,
        outcome: ProcessingOutcome,
        trail: Optional[AuditTrail] = None,
    ) -> Memory:
        """
        Copy of the memory after an outcome: reinforced confidence, one more
        use, last_used moved to now, success rate as a moving average.
        """
        new_confidence = self.reinforce_memory(memory, outcome, trail=trail)
        hit = 1.0 if outcome.outcome_type.is_success else 0.0
        success_rate = memory.success_rate * (1 - SUCCESS_RATE_SMOOTHING) + hit * SUCCESS_RATE_SMOOTHING

        now = self.clock()
        return memory.with_updates(
            confidence=clamp(new_confidence),
            success_rate=clamp(success_rate),
            usage_count=memory.usage_count + 1,
            last_used=now if ensure_utc(now) >= ensure_utc(memory.last_used) else memory.last_used,
        )

    def apply_decay(self, memory: Memory, trail: Optional[AuditTrail] = None) -> Memory:
        """Copy of the memory decayed by its own idle time."""
        idle_days = max(0.0, days_between(memory.last_used, self.clock()))
        new_confidence = self.decay_memory(memory, idle_days * MS_PER_DAY, trail=trail)
        return memory.with_updates(confidence=clamp(new_confidence))

    # ------------------------------------------------------------------
    # Reliability
    # ------------------------------------------------------------------

    def evaluate_memory_reliability(self, memory: Memory) -> ReliabilityScore:
        """Score how dependable a memory has been, with recommendations."""
        now = self.clock()
        days_since_creation = max(0.0, days_between(memory.created_at, now))
        days_since_last_use = max(0.0, days_between(memory.last_used, now))

        usage_frequency = memory.usage_count / max(1.0, days_since_creation)

        factors = (
            ReliabilityFactor(
                factor_type=ReliabilityFactorType.SUCCESS_RATE,
                impact=(memory.success_rate - 0.5) * 2,
                description=f"Success rate of {memory.success_rate * 100:.1f}%",
                value=memory.success_rate,
            ),
            ReliabilityFactor(
                factor_type=ReliabilityFactorType.USAGE_FREQUENCY,
                impact=min(1.0, usage_frequency / 10),
                description=f"Used {memory.usage_count} times since creation",
                value=usage_frequency,
            ),
            ReliabilityFactor(
                factor_type=ReliabilityFactorType.RECENCY,
                impact=max(-1.0, 1 - days_since_last_use / 30),
                description=f"Last used {days_since_last_use:.1f} days ago",
                value=days_since_last_use,
            ),
        )

        average_impact = sum(f.impact for f in factors) / len(factors)
        score = clamp((average_impact + 1) / 2)

        recommendations = []
        if memory.success_rate < 0.7:
            recommendations.append('Consider reviewing and refining memory patterns')
        if days_since_last_use > 30:
            recommendations.append('Memory may be outdated, consider archiving if not used soon')
        if memory.usage_count < 5:
            recommendations.append('Memory needs more validation through usage')

        return ReliabilityScore(
            score=score,
            classification=ReliabilityClassification.from_score(score),
            factors=factors,
            recommendations=tuple(recommendations),
        )

    # ------------------------------------------------------------------
    # Escalation threshold
    # ------------------------------------------------------------------

    def get_escalation_threshold(self) -> float:
        """
        Current escalation threshold.

        Any store failure, a missing value or a value outside [0, 1] falls
        back to the configured default.
        """
        default = self.config.default_escalation_threshold
        try:
            value = self.threshold_store.get_config_value(ESCALATION_THRESHOLD_KEY)
        except Exception as e:
            logger.warning(f"Failed to read escalation threshold, using default {default}: {e}")
            return default

        if value is None:
            return default
        try:
            threshold = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Stored escalation threshold {value!r} is not a number, using default {default}")
            return default
        if not 0.0 <= threshold <= 1.0:
            logger.warning(f"Stored escalation threshold {threshold} out of range, using default {default}")
            return default
        return threshold

    def should_auto_apply(self, confidence: float) -> bool:
        return confidence >= self.get_escalation_threshold()

    def adjust_escalation_threshold(
        self,
        metrics: PerformanceMetrics,
        trail: Optional[AuditTrail] = None,
    ) -> float:
        """
        Tune the escalation threshold from aggregate performance.

        Low automation lowers it, high automation with poor success raises
        it, heavy human review lowers it further and poor memory accuracy
        raises it. Changes smaller than 0.02 are not persisted.

        Returns:
            The new threshold (equal to the current one when unchanged)
        """
        current = self.get_escalation_threshold()
        new_threshold = current

        if metrics.automation_rate < 0.6:
            new_threshold = max(THRESHOLD_FLOOR, current - 0.05)
        elif metrics.automation_rate > 0.9 and metrics.success_rate < 0.8:
            new_threshold = min(THRESHOLD_CEILING, current + 0.05)

        if metrics.human_review_rate > 0.5:
            new_threshold = max(THRESHOLD_FLOOR, new_threshold - 0.03)

        if metrics.memory_metrics.accuracy_rate < 0.7:
            new_threshold = min(THRESHOLD_CEILING, new_threshold + 0.10)

        if abs(new_threshold - current) < MIN_THRESHOLD_CHANGE:
            logger.debug(f"Escalation threshold unchanged at {current:.3f}")
            return new_threshold

        try:
            self.threshold_store.set_config_value(ESCALATION_THRESHOLD_KEY, new_threshold)
        except Exception as e:
            logger.warning(f"Failed to persist escalation threshold {new_threshold:.3f}: {e}")

        adjustment = ThresholdAdjustment(
            timestamp=self.clock(),
            previous_threshold=current,
            new_threshold=new_threshold,
            reason=self._threshold_reason(metrics, current, new_threshold),
            triggering_metrics=metrics,
        )
        self._adjustments.append(adjustment)
        logger.info(adjustment.reason)

        if trail is not None:
            trail.record(
                AuditOperation.THRESHOLD_ADJUSTMENT,
                adjustment.reason,
                input={'previous_threshold': current, 'metrics': metrics.to_dict()},
                output={'new_threshold': new_threshold},
                actor='ConfidenceManager',
            )
        return new_threshold

    # ------------------------------------------------------------------
    # Overall confidence
    # ------------------------------------------------------------------

    def calculate_overall_confidence(
        self,
        memories: Sequence[Memory],
        context: MemoryContext,
        trail: Optional[AuditTrail] = None,
    ) -> ConfidenceCalculation:
        """
        Combine the confidence of a set of memories into one number.

        Components:
        - base: confidence averaged with weight usage_count + 1
        - reinforcement: (mean success rate - 0.5) * 0.2
        - decay: -0.01 per mean idle day, capped at -0.2
        - reliability: (mean reliability - 0.5) * 0.1
        - context: vendor and language match ratios, capped at 0.2
        """
        if not memories:
            calc = ConfidenceCalculation.empty()
        else:
            now = self.clock()
            count = len(memories)

            total_weight = sum(m.usage_count + 1 for m in memories)
            base = sum(m.confidence * (m.usage_count + 1) for m in memories) / total_weight

            mean_success = sum(m.success_rate for m in memories) / count
            reinforcement = (mean_success - 0.5) * 0.2

            mean_idle_days = sum(max(0.0, days_between(m.last_used, now)) for m in memories) / count
            decay = max(-0.2, -mean_idle_days * 0.01)

            mean_reliability = sum(self.evaluate_memory_reliability(m).score for m in memories) / count
            reliability_bonus = (mean_reliability - 0.5) * 0.1

            contextual = self._contextual_adjustment(memories, context)

            final = clamp(base + reinforcement + decay + reliability_bonus + contextual)
            calc = ConfidenceCalculation(
                base_confidence=base,
                reinforcement_factor=reinforcement,
                decay_factor=decay,
                reliability_bonus=reliability_bonus,
                contextual_adjustment=contextual,
                final_confidence=final,
                reasoning=self._confidence_reasoning(
                    base, reinforcement, decay, reliability_bonus, contextual, final, count
                ),
            )

        if trail is not None:
            trail.record(
                AuditOperation.CONFIDENCE_CALCULATION,
                'Overall confidence calculation',
                input={'memory_ids': [m.id for m in memories], 'vendor_id': context.vendor_id},
                output=calc.to_dict(),
                actor='ConfidenceManager',
            )
        return calc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _bound(self, confidence: float) -> float:
        return max(self.config.minimum_confidence, min(self.config.maximum_confidence, confidence))

    @staticmethod
    def _context_adjustment(context: MemoryContext) -> float:
        characteristics = context.invoice_characteristics
        return (
            _QUALITY_ADJUSTMENT[characteristics.extraction_quality]
            + _COMPLEXITY_ADJUSTMENT[characteristics.complexity]
        )

    @staticmethod
    def _pattern_size_adjustment(pattern: MemoryPattern) -> float:
        size = pattern.serialized_size
        if size < 100:
            return 0.05
        if size < 500:
            return 0.02
        if size < 1000:
            return -0.02
        return -0.05

    @staticmethod
    def _contextual_adjustment(memories: Sequence[Memory], context: MemoryContext) -> float:
        count = len(memories)
        vendor_ratio = sum(1 for m in memories if m.matches_vendor(context.vendor_id)) / count
        language_ratio = sum(1 for m in memories if m.context.language == context.language) / count
        return min(0.2, vendor_ratio * 0.1 + language_ratio * 0.05)

    @staticmethod
    def _confidence_reasoning(
        base: float,
        reinforcement: float,
        decay: float,
        reliability: float,
        contextual: float,
        final: float,
        count: int,
    ) -> str:
        parts = [f"Base confidence: {base:.3f} (from {count} memories)"]
        if reinforcement != 0:
            direction = 'positive' if reinforcement > 0 else 'negative'
            parts.append(f"{direction} reinforcement: {reinforcement:.3f}")
        if decay != 0:
            parts.append(f"decay adjustment: {decay:.3f}")
        if reliability != 0:
            parts.append(f"reliability bonus: {reliability:.3f}")
        if contextual != 0:
            parts.append(f"contextual adjustment: {contextual:.3f}")
        return ', '.join(parts) + f" = {final:.3f}"

    @staticmethod
    def _threshold_reason(metrics: PerformanceMetrics, old: float, new: float) -> str:
        reasons = []
        if metrics.automation_rate < 0.6:
            reasons.append('low automation rate')
        if metrics.automation_rate > 0.9 and metrics.success_rate < 0.8:
            reasons.append('high automation with low success rate')
        if metrics.human_review_rate > 0.5:
            reasons.append('high human review rate')
        if metrics.memory_metrics.accuracy_rate < 0.7:
            reasons.append('low memory accuracy')

        direction = 'increased' if new > old else 'decreased'
        return f"Threshold {direction} from {old:.3f} to {new:.3f} due to: {', '.join(reasons)}"
