from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from autotriage.context.extractor import ContextExtractor
from autotriage.diagnosis.engine import DiagnosisEngine
from autotriage.models import ErrorEvent, Failed
from autotriage.policy.gate import PolicyGate
from autotriage.remediation.remediator import Outcome, Remediator
from autotriage.repo.working_copy import WorkingCopy
from autotriage.warehouse.log_source import LogSourceAdapter


logger = logging.getLogger(__name__)


@dataclass
class Orchestrator:
    """
    The single poll loop. Events are processed one at a time against the one working copy;
    this object is the only holder of that working copy.
    """

    log_source: LogSourceAdapter
    working_copy: WorkingCopy
    extractor: ContextExtractor
    engine: DiagnosisEngine
    gate: PolicyGate
    remediator: Remediator
    poll_interval_s: float = 60.0
    sleep: Callable[[float], None] = field(default=time.sleep)

    def __post_init__(self) -> None:
        if self.remediator.working_copy is not self.working_copy:
            raise ValueError("remediator must share the orchestrator's working copy")

    def process_event(self, event: ErrorEvent) -> Outcome:
        context = self.extractor.extract(event)
        snippets = self.extractor.gather_snippets(context, event, self.working_copy)
        diagnosis = self.engine.diagnose(event, context, snippets)
        decision = self.gate.evaluate(diagnosis.suggested_patch)
        logger.info(
            "diagnosis %s for %s: actionable=%s category=%s blocked=%s",
            diagnosis.id[:8],
            event.signature,
            diagnosis.actionable,
            diagnosis.category.value,
            decision.blocked,
        )
        return self.remediator.remediate(event, diagnosis, decision)

    def run_cycle(self) -> List[Outcome]:
        """
        One fetch -> sync -> per-event pass. Never raises.
        """
        try:
            events = self.log_source.fetch_recent_events()
        except Exception as e:  # noqa: BLE001
            logger.error("fetch failed; cursor unchanged, retrying next poll: %s", e)
            return []

        try:
            self.working_copy.ensure_synced()
        except Exception as e:  # noqa: BLE001
            # Cursor already moved past these events; they are dropped (at-most-once).
            logger.error("working copy sync failed; skipping %d events this cycle: %s", len(events), e)
            return []

        if not events:
            logger.info("no new events")
            return []

        outcomes: List[Outcome] = []
        for ev in events:
            logger.info("processing event %s", ev.signature)
            try:
                outcomes.append(self.process_event(ev))
            except Exception as e:  # noqa: BLE001
                logger.exception("event %s failed: %s", ev.signature, e)
                outcomes.append(Failed(reason=f"{type(e).__name__}: {e}"))
        return outcomes

    def run_forever(self, *, max_cycles: Optional[int] = None) -> None:
        logger.info("autotriage starting (interval=%ss)", self.poll_interval_s)
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            self.run_cycle()
            cycles += 1
            self.sleep(self.poll_interval_s)
