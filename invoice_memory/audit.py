"""
Audit Trail

Every confidence calculation, recall and decision can leave an audit step.
Steps are collected in an AuditTrail that the caller creates and passes in;
components never keep audit state on themselves, so one engine instance can
serve concurrent requests.

Usage:
    trail = AuditTrail()
    result = engine.query_memories(query, trail=trail)
    for step in trail:
        print(step.operation.value, step.description)
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from loguru import logger

from .memory.types import utc_now


class AuditOperation(Enum):
    MEMORY_RECALL = 'memory_recall'
    MEMORY_LEARNING = 'memory_learning'
    CONFIDENCE_CALCULATION = 'confidence_calculation'
    THRESHOLD_ADJUSTMENT = 'threshold_adjustment'
    DECISION_MAKING = 'decision_making'
    ERROR_HANDLING = 'error_handling'


@dataclass(frozen=True)
class AuditStep:
    """One recorded step of processing."""
    id: str
    timestamp: datetime
    operation: AuditOperation
    description: str
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    actor: str = 'system'
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'operation': self.operation.value,
            'description': self.description,
            'input': self.input,
            'output': self.output,
            'actor': self.actor,
            'duration_ms': round(self.duration_ms, 3),
        }


class AuditTrail:
    """Ordered accumulator of audit steps for one request."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._steps: List[AuditStep] = []

    def record(
        self,
        operation: AuditOperation,
        description: str,
        input: Optional[Dict[str, Any]] = None,
        output: Optional[Dict[str, Any]] = None,
        actor: str = 'system',
        duration_ms: float = 0.0,
    ) -> AuditStep:
        step = AuditStep(
            id=f"audit-{uuid.uuid4().hex[:12]}",
            timestamp=self._clock(),
            operation=operation,
            description=description,
            input=dict(input or {}),
            output=dict(output or {}),
            actor=actor,
            duration_ms=duration_ms,
        )
        self._steps.append(step)
        logger.debug(f"Audit [{operation.value}] {description}")
        return step

    @property
    def steps(self) -> tuple:
        return tuple(self._steps)

    def by_operation(self, operation: AuditOperation) -> List[AuditStep]:
        return [s for s in self._steps if s.operation == operation]

    def to_list(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self._steps]

    def __iter__(self) -> Iterator[AuditStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)


@contextmanager
def timed() -> Iterator[Callable[[], float]]:
    """
    Measure elapsed wall time in milliseconds.

        with timed() as elapsed:
            ...
        trail.record(..., duration_ms=elapsed())
    """
    start = time.perf_counter()
    yield lambda: (time.perf_counter() - start) * 1000
