"""
Invoice Memory Decision Core

Decides how an incoming invoice should be processed from memories learned
on earlier invoices.

Features:
- Confidence scoring, reinforcement and decay of learned memories
- Memory reliability evaluation and an adaptive escalation threshold
- Context-aware memory recall with ranking and conflict resolution
- Risk assessment and a five-way processing decision with reasoning
- Audit trail of every recall, confidence and decision step

Quick Start:
    from invoice_memory import (
        InMemoryMemoryStore, MemoryDecisionPipeline,
        InvoiceProcessingContext, load_memories,
    )

    store = InMemoryMemoryStore(load_memories('memories.yaml'))
    pipeline = MemoryDecisionPipeline(store)

    assessment = pipeline.process(InvoiceProcessingContext(
        invoice_id='INV-2024-001',
        vendor_id='acme-gmbh',
        invoice_amount=1250.0,
    ))
    print(assessment.decision.decision_type)   # AUTO_APPROVE, HUMAN_REVIEW_REQUIRED, ...
    print(assessment.decision.reasoning)

CLI Usage:
    invoice-memory decide scenario.yaml
    invoice-memory recall scenario.yaml
    invoice-memory reliability scenario.yaml
    invoice-memory show-config
"""

__version__ = '0.1.0'

# Main pipeline
from .pipeline import (
    MemoryDecisionPipeline,
    InvoiceAssessment,
    PipelineMetrics,
)

# Configuration and errors
from .config import (
    CoreConfig,
    ConfidenceConfig,
    RecallConfig,
    DecisionConfig,
    ConfigLoader,
)
from .errors import (
    MemoryCoreError,
    StoreUnavailableError,
    MemoryValidationError,
    ConfigurationError,
)
from .audit import AuditTrail, AuditStep, AuditOperation

# Memory model and store
from .memory import (
    Memory,
    MemoryType,
    MemoryContext,
    MemoryPattern,
    PatternType,
    RiskLevel,
    ConflictResolutionStrategy,
    InMemoryMemoryStore,
    MemoryStore,
    ThresholdStore,
    load_memories,
)

# Components
from .confidence import (
    ConfidenceManager,
    ConfidenceCalculation,
    ProcessingOutcome,
    ProcessingOutcomeType,
    PerformanceMetrics,
    ReliabilityScore,
)
from .recall import (
    MemoryRecallEngine,
    MemoryQuery,
    RecallResult,
    InvoiceProcessingContext,
    ExtractedField,
)
from .decision import (
    DecisionEngine,
    DecisionContext,
    Decision,
    DecisionType,
    RiskAssessment,
    RecommendedAction,
)
from .validation import (
    ValidationIssue,
    IssueSeverity,
    ValidationIssueType,
)

__all__ = [
    # Version
    '__version__',

    # Main pipeline
    'MemoryDecisionPipeline',
    'InvoiceAssessment',
    'PipelineMetrics',

    # Configuration and errors
    'CoreConfig',
    'ConfidenceConfig',
    'RecallConfig',
    'DecisionConfig',
    'ConfigLoader',
    'MemoryCoreError',
    'StoreUnavailableError',
    'MemoryValidationError',
    'ConfigurationError',
    'AuditTrail',
    'AuditStep',
    'AuditOperation',

    # Memory
    'Memory',
    'MemoryType',
    'MemoryContext',
    'MemoryPattern',
    'PatternType',
    'RiskLevel',
    'ConflictResolutionStrategy',
    'InMemoryMemoryStore',
    'MemoryStore',
    'ThresholdStore',
    'load_memories',

    # Confidence
    'ConfidenceManager',
    'ConfidenceCalculation',
    'ProcessingOutcome',
    'ProcessingOutcomeType',
    'PerformanceMetrics',
    'ReliabilityScore',

    # Recall
    'MemoryRecallEngine',
    'MemoryQuery',
    'RecallResult',
    'InvoiceProcessingContext',
    'ExtractedField',

    # Decision
    'DecisionEngine',
    'DecisionContext',
    'Decision',
    'DecisionType',
    'RiskAssessment',
    'RecommendedAction',

    # Validation
    'ValidationIssue',
    'IssueSeverity',
    'ValidationIssueType',
]
