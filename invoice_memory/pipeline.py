"""
Memory Decision Pipeline

Orchestration module that wires recall, confidence and decision into one
call per invoice, and feeds processing outcomes back into the store.

Flow per invoice:
1. Recall memories for the invoice context
2. Combine their confidence into one processing confidence
3. Decide (auto-approve / review / escalate / reject / request info)
4. Return everything with the audit trail of the run
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .audit import AuditTrail, timed
from .config import CoreConfig
from .confidence.confidence_manager import ConfidenceCalculation, ConfidenceManager, ProcessingOutcome
from .decision.decision_engine import Decision, DecisionContext, DecisionEngine, DecisionType
from .memory.store import MemoryStore
from .memory.types import Memory, utc_now
from .memory.variants import get_description
from .recall.recall_engine import InvoiceProcessingContext, MemoryRecallEngine, RecallResult
from .validation.issues import ValidationIssue


@dataclass
class PipelineMetrics:
    """Counters across processed invoices."""

    total_invoices: int = 0
    failed_invoices: int = 0
    decisions: Dict[DecisionType, int] = field(default_factory=lambda: {t: 0 for t in DecisionType})
    total_memories_recalled: int = 0
    total_time_ms: float = 0.0

    @property
    def automation_rate(self) -> float:
        if self.total_invoices == 0:
            return 0.0
        return self.decisions[DecisionType.AUTO_APPROVE] / self.total_invoices

    @property
    def avg_time_per_invoice_ms(self) -> float:
        if self.total_invoices == 0:
            return 0.0
        return self.total_time_ms / self.total_invoices

    def to_dict(self) -> dict:
        return {
            'total_invoices': self.total_invoices,
            'failed_invoices': self.failed_invoices,
            'decisions': {t.value: n for t, n in self.decisions.items()},
            'total_memories_recalled': self.total_memories_recalled,
            'automation_rate': self.automation_rate,
            'total_time_ms': self.total_time_ms,
            'avg_time_per_invoice_ms': self.avg_time_per_invoice_ms,
        }


@dataclass
class InvoiceAssessment:
    """Result from processing a single invoice."""

    invoice_id: str
    recall: RecallResult
    confidence: ConfidenceCalculation
    decision: Decision
    audit_trail: AuditTrail
    processing_time_ms: float = 0.0

    @property
    def is_automated(self) -> bool:
        return self.decision.decision_type.is_automated

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'invoice_id': self.invoice_id,
            'recall': self.recall.to_dict(),
            'confidence': self.confidence.to_dict(),
            'decision': self.decision.to_dict(),
            'audit_trail': self.audit_trail.to_list(),
            'processing_time_ms': self.processing_time_ms,
        }


class MemoryDecisionPipeline:
    """
    Main orchestration class for memory-driven invoice decisions.

    Usage:
        store = InMemoryMemoryStore(load_memories('memories.yaml'))
        pipeline = MemoryDecisionPipeline(store)

        assessment = pipeline.process(InvoiceProcessingContext(
            invoice_id='INV-2024-001',
            vendor_id='acme-gmbh',
            invoice_amount=1200.0,
        ))
        print(assessment.decision.decision_type.display_name)

        # Later, once the outcome is known
        pipeline.learn_from_outcome(
            [m.id for m in assessment.recall.recalled],
            ProcessingOutcome(ProcessingOutcomeType.SUCCESS_AUTO),
        )
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[CoreConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize pipeline.

        Args:
            store: Memory store, also holding the escalation threshold
            config: Core configuration
            clock: Time source, UTC now by default
        """
        self.store = store
        self.config = config or CoreConfig()
        self.clock = clock or utc_now

        self.confidence_manager = ConfidenceManager(store, self.config.confidence, clock=self.clock)
        self.recall_engine = MemoryRecallEngine(store, self.config.recall, clock=self.clock)
        self.decision_engine = DecisionEngine(self.confidence_manager, self.config.decision)

        self.metrics = PipelineMetrics()

    def process(
        self,
        invoice: InvoiceProcessingContext,
        validation_issues: Sequence[ValidationIssue] = (),
    ) -> InvoiceAssessment:
        """
        Process a single invoice.

        Args:
            invoice: What is known about the incoming invoice
            validation_issues: Issues reported by upstream validation

        Returns:
            InvoiceAssessment with recall, confidence, decision and audit trail

        Raises:
            StoreUnavailableError: the store failed during recall
        """
        trail = AuditTrail(clock=self.clock)
        logger.info(f"Processing invoice {invoice.invoice_id}")

        try:
            with timed() as elapsed:
                recall = self.recall_engine.recall_memories(invoice, trail=trail)
                recalled = recall.recalled
                for memory in recalled:
                    logger.debug(f"  {memory.id}: {get_description(memory)} (confidence={memory.confidence:.2f})")

                confidence = self.confidence_manager.calculate_overall_confidence(
                    recalled, recall.context, trail=trail
                )

                decision = self.decision_engine.make_decision(
                    DecisionContext(
                        invoice_id=invoice.invoice_id,
                        confidence=confidence.final_confidence,
                        memory_context=recall.context,
                        applied_memories=tuple(recalled),
                        validation_issues=tuple(validation_issues),
                        invoice_amount=invoice.invoice_amount or 0.0,
                        currency=invoice.currency,
                    ),
                    trail=trail,
                )
        except Exception as e:
            logger.error(f"Error processing invoice {invoice.invoice_id}: {e}")
            self.metrics.failed_invoices += 1
            raise

        assessment = InvoiceAssessment(
            invoice_id=invoice.invoice_id,
            recall=recall,
            confidence=confidence,
            decision=decision,
            audit_trail=trail,
            processing_time_ms=elapsed(),
        )
        self._update_metrics(assessment)

        logger.info(
            f"Invoice {invoice.invoice_id}: {decision.decision_type.display_name} "
            f"with {len(recalled)} memories in {assessment.processing_time_ms:.1f}ms"
        )
        return assessment

    def process_batch(
        self,
        invoices: Iterable[InvoiceProcessingContext],
        validation_issues: Optional[Dict[str, Sequence[ValidationIssue]]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[InvoiceAssessment]:
        """
        Process several invoices in order.

        A failing invoice is logged and skipped; the rest still run.
        """
        invoices = list(invoices)
        issues_by_invoice = validation_issues or {}
        results = []

        for i, invoice in enumerate(invoices):
            try:
                results.append(self.process(invoice, issues_by_invoice.get(invoice.invoice_id, ())))
            except Exception as e:
                logger.error(f"Skipping invoice {invoice.invoice_id}: {e}")

            if progress_callback:
                progress_callback(i + 1, len(invoices))

        return results

    def learn_from_outcome(
        self,
        memory_ids: Sequence[str],
        outcome: ProcessingOutcome,
        trail: Optional[AuditTrail] = None,
    ) -> List[Memory]:
        """
        Feed a processing outcome back into the memories that were applied.

        Each named memory is reinforced, its usage and success rate updated,
        and saved back to the store. Unknown ids are skipped with a warning.

        Returns:
            The updated memories, in the order given
        """
        wanted = list(dict.fromkeys(memory_ids))
        known = {m.id: m for m in self.store.get_all_memories() if m.id in set(wanted)}

        updated = []
        for memory_id in wanted:
            memory = known.get(memory_id)
            if memory is None:
                logger.warning(f"Cannot learn from outcome: memory {memory_id} not found")
                continue

            new_memory = self.confidence_manager.apply_outcome(memory, outcome, trail=trail)
            self.store.save_memory(new_memory)
            updated.append(new_memory)

        logger.info(
            f"Applied {outcome.outcome_type.value} outcome to {len(updated)} of {len(wanted)} memories"
        )
        return updated

    def export_results(self, results: List[InvoiceAssessment], output_path: str) -> None:
        """Export assessments and metrics to JSON."""
        data = {
            'results': [r.to_dict() for r in results],
            'metrics': self.metrics.to_dict(),
            'config': self.config.to_dict(),
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)

    def get_metrics(self) -> PipelineMetrics:
        return self.metrics

    def reset_metrics(self) -> None:
        self.metrics = PipelineMetrics()

    def _update_metrics(self, assessment: InvoiceAssessment) -> None:
        self.metrics.total_invoices += 1
        self.metrics.decisions[assessment.decision.decision_type] += 1
        self.metrics.total_memories_recalled += len(assessment.recall.memories)
        self.metrics.total_time_ms += assessment.processing_time_ms
