"""
Reveal readiness gate.

A pure function of aggregate counters deciding when the synthesis view
may be shown, plus a latch that keeps the reveal open once reached.
"""

from dataclasses import dataclass

from live_insight.models.schemas import ReadinessChecks, ReadinessReport


@dataclass(frozen=True)
class ReadinessInputs:
    """Aggregate counters the gate depends on."""

    total_utterances: int
    confident_utterances: int
    dependency_processed: int
    synthesis_items: int
    narrative: str | None
    dependency_links: int = 0
    pressure_points: int = 0


@dataclass(frozen=True)
class ReadinessThresholds:
    min_confident: int = 10
    min_dependency_processed: int = 12
    min_synthesis_items: int = 4
    min_narrative_chars: int = 40


def evaluate_readiness(
    inputs: ReadinessInputs,
    thresholds: ReadinessThresholds = ReadinessThresholds(),
) -> ReadinessReport:
    """
    Evaluate the four reveal conditions.

    Coverage floors relax to "all utterances" while fewer than the floor
    have arrived. The last two checks are informational only.
    """
    total = inputs.total_utterances
    intent_ready = total > 0 and inputs.confident_utterances >= min(total, thresholds.min_confident)
    dependency_ready = total > 0 and inputs.dependency_processed >= min(
        total, thresholds.min_dependency_processed
    )
    synthesis_ready = inputs.synthesis_items >= thresholds.min_synthesis_items
    narrative_ready = bool(
        inputs.narrative and len(inputs.narrative.strip()) >= thresholds.min_narrative_chars
    )

    return ReadinessReport(
        reveal_ready=intent_ready and dependency_ready and synthesis_ready and narrative_ready,
        checks=ReadinessChecks(
            intent_extraction_ready=intent_ready,
            dependency_inference_ready=dependency_ready,
            domain_synthesis_ready=synthesis_ready,
            vision_narrative_ready=narrative_ready,
            dependency_lines_visible=inputs.dependency_links > 0,
            pressure_points_detected=inputs.pressure_points > 0,
        ),
    )


class RevealLatch:
    """Holds `reveal_ready` true once it has been reached, unless disabled."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._latched = False

    def update(self, report: ReadinessReport) -> ReadinessReport:
        if report.reveal_ready:
            self._latched = True
        if self.enabled and self._latched and not report.reveal_ready:
            return report.model_copy(update={"reveal_ready": True})
        return report

    @property
    def latched(self) -> bool:
        return self._latched

    def reset(self) -> None:
        self._latched = False
