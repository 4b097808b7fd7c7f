from __future__ import annotations

import asyncio
import threading
import time
import traceback
from typing import AsyncIterable, AsyncIterator, Iterable, List, Protocol

from automation_engine.evaluation.evaluator import AutomationEvaluator
from automation_engine.evaluation.history import EvaluationHistory
from automation_engine.exceptions.core import ConfigurationError, FatalError, TickAbandonedError
from automation_engine.facts.snapshot import TickFacts
from automation_engine.runtime.snapshot import TickResult
from automation_engine.utils.logger import (
    get_logger,
    log_error,
    log_heartbeat,
    log_request,
    log_warn,
)


class RunRequestSink(Protocol):
    """Receives committed tick results; launching runs is its business."""

    def submit(self, result: TickResult) -> None:
        ...


class InMemoryRequestSink:
    """Collects submitted results; used by the offline app and tests."""

    def __init__(self) -> None:
        self.submitted: List[TickResult] = []

    def submit(self, result: TickResult) -> None:
        self.submitted.append(result)

    @property
    def requests(self) -> list[dict[str, list]]:
        return [
            {key: subset.sorted_keys() for key, subset in result.requests.items()}
            for result in self.submitted
        ]


async def _iter_facts(source: Iterable[TickFacts] | AsyncIterable[TickFacts]) -> AsyncIterator[TickFacts]:
    if hasattr(source, "__aiter__"):
        async for facts in source:  # type: ignore[union-attr]
            yield facts
    else:
        for facts in source:  # type: ignore[union-attr]
            yield facts
            await asyncio.sleep(0)  # cooperative scheduling point


class AutomationDriver:
    """
    Owns the tick loop: evaluate -> commit -> submit.

    Responsibilities:
      - Feed the evaluator the prior view of committed history.
      - Commit a TickResult only when the tick fully completed; an abandoned
        or stopped tick leaves history untouched.
      - Hand committed requests to the sink.

    Non-responsibilities:
      - Does NOT fetch facts (they arrive pre-fetched).
      - Does NOT launch runs.
    """

    def __init__(
        self,
        *,
        evaluator: AutomationEvaluator,
        history: EvaluationHistory | None = None,
        sink: RunRequestSink | None = None,
        stop_event: threading.Event | None = None,
        targets: Iterable[str] | None = None,
    ):
        self.evaluator = evaluator
        self.history = history if history is not None else EvaluationHistory()
        self.sink = sink
        self.targets = tuple(targets) if targets is not None else None
        self._stop_event = stop_event or threading.Event()
        self._alerted = False
        self._logger = get_logger(self.__class__.__name__)
        self.errors: List[ConfigurationError] = []

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self) -> None:
        self._stop_event.set()

    # -------------------------------------------------
    # One tick
    # -------------------------------------------------
    def tick(self, facts: TickFacts) -> TickResult | None:
        """
        Evaluate and commit one tick.

        Returns None when the tick was abandoned; raises ConfigurationError
        when the pass is rejected (nothing committed in either case).
        """
        if self._stop_event.is_set():
            return None

        started = time.perf_counter()
        tick_index = self.history.next_tick_index
        try:
            result = self.evaluator.evaluate(
                facts,
                self.history.view(),
                tick_index=tick_index,
                targets=self.targets,
                should_abandon=self._stop_event.is_set,
            )
        except TickAbandonedError as exc:
            log_warn(self._logger, "Tick abandoned; nothing committed", tick=tick_index, reason=str(exc))
            return None

        if self._stop_event.is_set():
            log_warn(self._logger, "Stop requested before commit; tick discarded", tick=tick_index)
            return None

        self.history.commit(result)
        if self.sink is not None:
            self.sink.submit(result)

        requests = result.requests
        log_request(
            self._logger,
            "Tick requests emitted",
            tick=tick_index,
            entities=sorted(requests),
            partitions=sum(len(subset) for subset in requests.values()),
        )
        log_heartbeat(
            self._logger,
            "Tick completed",
            tick=tick_index,
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 3),
            entities=len(result.records),
        )
        return result

    # -------------------------------------------------
    # Loop
    # -------------------------------------------------
    async def run(self, facts_source: Iterable[TickFacts] | AsyncIterable[TickFacts]) -> List[TickResult]:
        """
        Run ticks until the source is exhausted or stop is requested.

        Rejected passes (ConfigurationError) are logged and recorded in
        `errors`; the loop continues with the next tick. Anything else is
        fatal.
        """
        results: List[TickResult] = []
        try:
            async for facts in _iter_facts(facts_source):
                if self._stop_event.is_set():
                    break
                try:
                    result = self.tick(facts)
                except ConfigurationError as exc:
                    self.errors.append(exc)
                    log_error(
                        self._logger,
                        "Evaluation pass rejected",
                        tick=self.history.next_tick_index,
                        err_type=type(exc).__name__,
                        err=str(exc),
                    )
                    continue
                if result is not None:
                    results.append(result)
        except Exception as exc:
            self._handle_fatal(exc)
        return results

    def _alert_once(self, exc: BaseException) -> None:
        if self._alerted:
            return
        self._alerted = True
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log_error(
            self._logger,
            "runtime.fatal_error",
            err_type=type(exc).__name__,
            err=str(exc),
            stack=stack,
        )

    def _handle_fatal(self, exc: BaseException) -> None:
        self._stop_event.set()
        self._alert_once(exc)
        if isinstance(exc, FatalError):
            raise exc
        raise FatalError(str(exc)) from exc
