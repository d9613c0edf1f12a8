"""Stage 3: Remediation engine.

Drives the conversion cascade for a processable document:

    Start -> primary -> verify -> {done | extreme} -> verify
          -> {done | cloud group} -> {done | local cascade} -> size gate -> done

Rules:
    - Each stage consumes the artifact produced by the stage before it. The
      caller's buffer is never modified and stays the fallback artifact.
    - A failed stage is logged and the cascade moves on.
    - Cloud group: services are tried in priority order until one succeeds.
      A connectivity failure skips the rest of the group.
    - Local cascade: strategies are tried in order until one succeeds.
    - Size gate: one extra pass, only when the artifact is still oversize.
      Its output is kept only when it is smaller.
    - ``RemediationExhaustedError`` is raised only when no stage ever
      produced a non-empty artifact.
    - The cancel event is checked between stages, never mid-stage.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import structlog

from pdfconform.config import ComplianceThresholds
from pdfconform.errors import PipelineCancelledError, RemediationExhaustedError
from pdfconform.models import ComplianceSnapshot, ProcessingResult, RemediationAttempt
from pdfconform.stages.stage_2_conversion import (
    ConversionOutcome,
    ConversionStrategy,
    RemediationPlan,
)
from pdfconform.stages.stage_4_verification import ComplianceVerifier

log = structlog.get_logger(__name__)

_MB = 1024 * 1024


@dataclass
class _RunState:
    """Per-run bookkeeping. Never shared between runs."""

    original: bytes
    current: bytes
    cancel_event: threading.Event | None
    produced: bool = False
    size_gate_applied: bool = False
    optimizations: list[str] = field(default_factory=list)
    attempts: list[RemediationAttempt] = field(default_factory=list)

    def check_cancelled(self, next_stage: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            log.info("remediation_cancelled", next_stage=next_stage)
            raise PipelineCancelledError(f"Remediation cancelled before {next_stage}")


class RemediationEngine:
    def __init__(
        self,
        plan: RemediationPlan,
        verifier: ComplianceVerifier,
        thresholds: ComplianceThresholds,
    ) -> None:
        self._plan = plan
        self._verifier = verifier
        self._thresholds = thresholds

    def remediate(
        self,
        buffer: bytes,
        filename: str = "document.pdf",
        cancel_event: threading.Event | None = None,
    ) -> ProcessingResult:
        """Run the cascade on *buffer* and return the best artifact found.

        Raises ``RemediationExhaustedError`` when nothing was ever produced
        and ``PipelineCancelledError`` when *cancel_event* is set between
        stages.
        """
        log.info("remediation_started", filename=filename, size_bytes=len(buffer))
        state = _RunState(original=buffer, current=buffer, cancel_event=cancel_event)

        done = self._raster_phase(state)
        if not done:
            done = self._cloud_phase(state)
        if not done:
            self._local_phase(state)

        self._size_gate(state)

        if not state.produced:
            log.error("remediation_exhausted", filename=filename, attempts=len(state.attempts))
            raise RemediationExhaustedError(
                "No remediation stage produced a usable PDF: "
                + "; ".join(state.optimizations)
            )

        state.check_cancelled("final verification")
        verification = self._verifier.verify(state.current)
        return self._result(state, verification, filename)

    # -- phases --------------------------------------------------------------

    def _raster_phase(self, state: _RunState) -> bool:
        for strategy in self._plan.raster:
            state.check_cancelled(strategy.name)
            outcome = self._run(strategy, state)
            if outcome.succeeded and self._images_compliant(state, strategy):
                return True
        return False

    def _cloud_phase(self, state: _RunState) -> bool:
        services = [s for s in self._plan.cloud if s.configured]
        if not services:
            state.optimizations.append("Cloud conversion: skipped: no services configured")
            return False

        for position, service in enumerate(services):
            state.check_cancelled(service.name)
            outcome = self._run(service, state)
            if outcome.succeeded:
                return self._images_compliant(state, service)
            if outcome.connectivity_failure:
                skipped = [s.name for s in services[position + 1 :]]
                state.optimizations.append(
                    "Cloud conversion: group unavailable after connectivity failure"
                    + (f"; skipped {', '.join(skipped)}" if skipped else "")
                )
                log.warning("cloud_group_unavailable", service=service.name, skipped=skipped)
                return False
        return False

    def _local_phase(self, state: _RunState) -> None:
        for strategy in self._plan.local:
            state.check_cancelled(strategy.name)
            outcome = self._run(strategy, state)
            if outcome.succeeded:
                return
        state.optimizations.append("Local fallbacks: all fallbacks failed; keeping previous artifact")
        log.warning("local_fallbacks_exhausted")

    def _size_gate(self, state: _RunState) -> None:
        limit = self._thresholds.max_size_bytes
        if len(state.current) <= limit:
            return

        strategy = self._plan.size_gate
        state.check_cancelled(strategy.name)
        before = len(state.current)
        outcome = strategy.attempt(state.current)
        state.size_gate_applied = True
        self._record(state, outcome)

        if not outcome.succeeded:
            state.optimizations.append(
                f"{strategy.description}: failed ({outcome.error_message})"
            )
            return

        state.produced = True
        if outcome.size_bytes < before:
            state.current = outcome.buffer
            verdict = "within" if outcome.size_bytes <= limit else "still above"
            state.optimizations.append(
                f"{strategy.description}: {before / _MB:.2f} MB -> "
                f"{outcome.size_bytes / _MB:.2f} MB ({verdict} the {limit / _MB:.0f} MB limit)"
            )
        else:
            state.optimizations.append(
                f"{strategy.description}: no reduction "
                f"({outcome.size_bytes / _MB:.2f} MB); keeping previous artifact"
            )

    # -- helpers -------------------------------------------------------------

    def _run(self, strategy: ConversionStrategy, state: _RunState) -> ConversionOutcome:
        outcome = strategy.attempt(state.current)
        self._record(state, outcome)
        if outcome.succeeded:
            state.current = outcome.buffer
            state.produced = True
            state.optimizations.append(
                f"{strategy.description}: succeeded ({outcome.size_bytes / _MB:.2f} MB)"
            )
        else:
            state.optimizations.append(
                f"{strategy.description}: failed ({outcome.error_message})"
            )
        return outcome

    @staticmethod
    def _record(state: _RunState, outcome: ConversionOutcome) -> None:
        state.attempts.append(
            RemediationAttempt(
                strategy_name=outcome.strategy_name,
                succeeded=outcome.succeeded,
                resulting_size_bytes=outcome.size_bytes,
                error_message=outcome.error_message,
            )
        )

    def _images_compliant(self, state: _RunState, strategy: ConversionStrategy) -> bool:
        state.check_cancelled(f"verification after {strategy.name}")
        snapshot = self._verifier.verify(state.current)
        if snapshot.images_compliant:
            state.optimizations.append(f"Verification after {strategy.name}: images compliant")
            return True
        log.info(
            "verification_outstanding_issues",
            strategy=strategy.name,
            issues=len(snapshot.errors),
        )
        return False

    @staticmethod
    def _result(
        state: _RunState,
        verification: ComplianceSnapshot,
        filename: str,
    ) -> ProcessingResult:
        original_size = len(state.original)
        processed_size = len(state.current)
        ratio = 1 - processed_size / original_size if original_size else 0.0

        log.info(
            "remediation_complete",
            filename=filename,
            original_size=original_size,
            processed_size=processed_size,
            compression_ratio=round(ratio, 4),
            compliant=verification.compliant,
            stages=len(state.attempts),
        )
        return ProcessingResult(
            buffer=state.current,
            original_size=original_size,
            processed_size=processed_size,
            compression_ratio=ratio,
            optimizations=tuple(state.optimizations),
            attempts=tuple(state.attempts),
            size_gate_applied=state.size_gate_applied,
            verification=verification,
        )
