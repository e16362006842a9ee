"""
Recommended Actions

Follow-up actions attached to every decision. Each decision type has one
canonical action; human review adds a field check per blocking issue, and
any weak applied memory adds a memory review.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence

from ..memory.types import Memory, OrderedEnum
from ..validation.issues import ValidationIssue, blocking_issues


class ActionType(Enum):
    APPLY_CORRECTION = 'apply_correction'
    VALIDATE_FIELD = 'validate_field'
    CONTACT_VENDOR = 'contact_vendor'
    ESCALATE_ISSUE = 'escalate_issue'
    UPDATE_MEMORY = 'update_memory'


class ActionPriority(OrderedEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


@dataclass(frozen=True)
class RecommendedAction:
    action_type: ActionType
    priority: ActionPriority
    description: str
    expected_outcome: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action_type': self.action_type.value,
            'priority': self.priority.value,
            'description': self.description,
            'expected_outcome': self.expected_outcome,
        }


MEMORY_REVIEW_CONFIDENCE = 0.5


def review_actions(issues: Sequence[ValidationIssue]) -> List[RecommendedAction]:
    """One VALIDATE_FIELD action per ERROR/CRITICAL issue."""
    return [
        RecommendedAction(
            action_type=ActionType.VALIDATE_FIELD,
            priority=ActionPriority.HIGH,
            description=f"Validate {issue.affected_field}: {issue.description}",
            expected_outcome=issue.suggested_resolution or 'Field validation and correction',
        )
        for issue in blocking_issues(issues)
    ]


def memory_review_action(applied_memories: Sequence[Memory]) -> List[RecommendedAction]:
    weak = [m for m in applied_memories if m.confidence < MEMORY_REVIEW_CONFIDENCE]
    if not weak:
        return []
    return [RecommendedAction(
        action_type=ActionType.UPDATE_MEMORY,
        priority=ActionPriority.LOW,
        description=f"Review and potentially update {len(weak)} low-confidence memories",
        expected_outcome='Improved memory reliability for future processing',
    )]


APPLY_ALL = RecommendedAction(
    action_type=ActionType.APPLY_CORRECTION,
    priority=ActionPriority.HIGH,
    description='Apply all memory-based corrections and process automatically',
    expected_outcome='Invoice processed without human intervention',
)

HUMAN_REVIEW = RecommendedAction(
    action_type=ActionType.ESCALATE_ISSUE,
    priority=ActionPriority.MEDIUM,
    description='Escalate to human reviewer for validation',
    expected_outcome='Human validation of memory applications and corrections',
)

EXPERT_REVIEW = RecommendedAction(
    action_type=ActionType.ESCALATE_ISSUE,
    priority=ActionPriority.CRITICAL,
    description='Escalate to domain expert for complex decision',
    expected_outcome='Expert review and guidance on processing approach',
)

REJECTION = RecommendedAction(
    action_type=ActionType.ESCALATE_ISSUE,
    priority=ActionPriority.CRITICAL,
    description='Reject invoice due to critical issues or very low confidence',
    expected_outcome='Invoice rejected and returned to sender for correction',
)

VENDOR_CONTACT = RecommendedAction(
    action_type=ActionType.CONTACT_VENDOR,
    priority=ActionPriority.MEDIUM,
    description='Request additional information from vendor',
    expected_outcome='Clarification received to enable proper processing',
)
