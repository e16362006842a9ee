"""
Configuration

Every tunable number of the core lives in one of three dataclasses:
- ConfidenceConfig: reinforcement, decay and confidence bounds
- RecallConfig: candidate limits and ranking weights
- DecisionConfig: decision thresholds and policy switches

CoreConfig groups them and can be loaded from YAML:

    confidence:
      decay_rate_per_day: 0.02
    recall:
      max_memories_per_query: 20
    decision:
      auto_approval_threshold: 0.9

Values are range-checked on construction; unknown keys are rejected.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from loguru import logger

from .errors import ConfigurationError
from .memory.types import ConflictResolutionStrategy, RiskLevel


def _check_unit(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value!r}")


def _check_non_negative(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")


def _serialize(config) -> Dict[str, Any]:
    data = asdict(config)
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


@dataclass
class ConfidenceConfig:
    """Confidence manager tuning."""
    base_confidence: float = 0.5
    max_reinforcement: float = 0.1
    decay_rate_per_day: float = 0.01
    minimum_confidence: float = 0.1
    maximum_confidence: float = 1.0
    learning_rate: float = 0.1

    # Reserved; reliability currently averages its factors unweighted
    context_weight: float = 0.3
    success_rate_weight: float = 0.4
    recency_weight: float = 0.3

    default_escalation_threshold: float = 0.7

    def __post_init__(self):
        for name in ('base_confidence', 'minimum_confidence', 'maximum_confidence',
                     'learning_rate', 'context_weight', 'success_rate_weight',
                     'recency_weight', 'default_escalation_threshold'):
            _check_unit(name, getattr(self, name))
        _check_non_negative('max_reinforcement', self.max_reinforcement)
        _check_non_negative('decay_rate_per_day', self.decay_rate_per_day)
        if self.minimum_confidence > self.maximum_confidence:
            raise ConfigurationError(
                f"minimum_confidence ({self.minimum_confidence}) exceeds "
                f"maximum_confidence ({self.maximum_confidence})"
            )

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class RecallConfig:
    """Recall engine tuning."""
    max_memories_per_query: int = 50
    min_relevance_threshold: float = 0.1

    # Ranking weights
    confidence_weight: float = 0.4
    relevance_weight: float = 0.4
    recency_weight: float = 0.2

    enable_vendor_prioritization: bool = True
    enable_pattern_filtering: bool = True
    conflict_resolution_strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.HIGHEST_CONFIDENCE

    def __post_init__(self):
        if isinstance(self.conflict_resolution_strategy, str):
            try:
                self.conflict_resolution_strategy = ConflictResolutionStrategy(
                    self.conflict_resolution_strategy.lower()
                )
            except ValueError:
                raise ConfigurationError(
                    f"Unknown conflict_resolution_strategy: {self.conflict_resolution_strategy}"
                ) from None
        if isinstance(self.max_memories_per_query, bool) or not isinstance(self.max_memories_per_query, int) \
                or self.max_memories_per_query < 1:
            raise ConfigurationError(
                f"max_memories_per_query must be a positive integer, got {self.max_memories_per_query!r}"
            )
        for name in ('min_relevance_threshold', 'confidence_weight', 'relevance_weight', 'recency_weight'):
            _check_unit(name, getattr(self, name))

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class DecisionConfig:
    """
    Decision engine thresholds and policy.

    `risk_tolerance` is the highest risk level that still allows
    auto-approval on high confidence.
    """
    auto_approval_threshold: float = 0.85
    rejection_threshold: float = 0.3
    high_value_invoice_threshold: float = 10000
    conservative_mode_for_new_vendors: bool = True
    risk_tolerance: RiskLevel = RiskLevel.MEDIUM

    def __post_init__(self):
        if isinstance(self.risk_tolerance, str):
            try:
                self.risk_tolerance = RiskLevel(self.risk_tolerance.lower())
            except ValueError:
                raise ConfigurationError(f"Unknown risk_tolerance: {self.risk_tolerance}") from None
        for name in ('auto_approval_threshold', 'rejection_threshold'):
            _check_unit(name, getattr(self, name))
        if isinstance(self.high_value_invoice_threshold, bool) or \
                not isinstance(self.high_value_invoice_threshold, (int, float)) or \
                self.high_value_invoice_threshold <= 0:
            raise ConfigurationError(
                f"high_value_invoice_threshold must be positive, got {self.high_value_invoice_threshold!r}"
            )
        if self.rejection_threshold > self.auto_approval_threshold:
            raise ConfigurationError("rejection_threshold cannot exceed auto_approval_threshold")

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class CoreConfig:
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    recall: RecallConfig = field(default_factory=RecallConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'confidence': self.confidence.to_dict(),
            'recall': self.recall.to_dict(),
            'decision': self.decision.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CoreConfig':
        """
        Build a config from nested section dicts.

        Raises:
            ConfigurationError: unknown section/key or out-of-range value
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping, got {type(data).__name__}")

        sections = {
            'confidence': ConfidenceConfig,
            'recall': RecallConfig,
            'decision': DecisionConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        built = {}
        for name, section_cls in sections.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigurationError(f"Config section '{name}' must be a mapping")
            allowed = {f.name for f in fields(section_cls)}
            bad = set(values) - allowed
            if bad:
                raise ConfigurationError(f"Unknown keys in '{name}': {', '.join(sorted(bad))}")
            built[name] = section_cls(**values)

        return cls(**built)


class ConfigLoader:
    """
    Loads core configuration from YAML files.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.raw: Dict[str, Any] = {}
        self.config = CoreConfig()

        if self.config_path:
            self.load(self.config_path)

    def load(self, config_path: Union[str, Path]) -> CoreConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            Parsed CoreConfig
        """
        logger.info(f"Loading configuration from: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                self.raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}")
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

        self.config = CoreConfig.from_dict(self.raw)
        logger.info(f"Loaded config sections: {', '.join(sorted(self.raw)) or 'defaults only'}")
        return self.config
