"""
Validation Issue Package

Validation issues reported against an invoice before a decision is made.
The core does not validate fields itself; it weighs the issues it is given.

Usage:
    from invoice_memory.validation import ValidationIssue, IssueSeverity

    issue = ValidationIssue(
        severity=IssueSeverity.ERROR,
        issue_type=ValidationIssueType.MISSING_FIELD,
        affected_field='due_date',
        description='Due date is missing',
    )
"""

from .issues import (
    IssueSeverity,
    ValidationIssueType,
    ValidationIssue,
    count_by_severity,
    blocking_issues,
)

__all__ = [
    'IssueSeverity',
    'ValidationIssueType',
    'ValidationIssue',
    'count_by_severity',
    'blocking_issues',
]
