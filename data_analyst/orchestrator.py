# orchestrator.py

import asyncio
import logging
import time
from typing import Any, Optional, Union

import httpx

from . import config
from .assembler import AnswerAssembler
from .charts import ChartRenderer
from .errors import AnalysisTimeoutError, Failure, MalformedRequestError, classify
from .extractor import PlanExtractor
from .llm import LanguageModel, build_language_model
from .query import QueryEngine
from .scraper import Scraper
from .stages import StageRunner

logger = logging.getLogger(__name__)


def _discard(task: asyncio.Task) -> None:
    # the watchdog already answered; retrieve whatever the late pipeline produced and drop it
    if not task.cancelled() and task.exception() is not None:
        logger.info(f"Late pipeline failure discarded: {task.exception()!r}")


class Orchestrator:
    def __init__(self, extractor: PlanExtractor, runner: StageRunner, assembler: Optional[AnswerAssembler] = None):
        self.extractor = extractor
        self.runner = runner
        self.assembler = assembler or AnswerAssembler()

    @classmethod
    def from_client(cls, client: httpx.AsyncClient, llm: Optional[LanguageModel] = None) -> "Orchestrator":
        llm = llm or build_language_model(client)
        runner = StageRunner(Scraper(client), QueryEngine(), llm, ChartRenderer())
        return cls(PlanExtractor(llm), runner)

    async def analyze(self, task_text: str) -> Any:
        """received -> extracting -> running-stages -> assembling -> done"""
        t0 = time.monotonic()
        logger.info(f"[extracting] {task_text[:120]!r}")
        plan = await self.extractor.extract(task_text)
        logger.info(f"[running-stages] kind={plan.kind} questions={len(plan.questions)} "
                    f"charts={plan.visualization_count} shape={plan.output_shape}")
        outcome = await self.runner.run_deferred(plan)
        logger.info("[assembling]")
        result = self.assembler.assemble(plan, outcome.answers, outcome.charts)
        logger.info(f"[done] in {time.monotonic() - t0:.2f}s")
        return result

    async def handle(self, task_text: str, timeout_ms: int = config.DEFAULT_TIMEOUT_MS) -> Union[Any, Failure]:
        """Run the pipeline against a watchdog; returns the answer or a typed Failure, never raises."""
        if not isinstance(task_text, str) or not task_text.strip():
            return Failure.from_error(MalformedRequestError("Invalid request", "Task description is required"))
        if not isinstance(timeout_ms, (int, float)) or isinstance(timeout_ms, bool) or timeout_ms <= 0:
            return Failure.from_error(MalformedRequestError("Invalid request", "timeout must be a positive number of milliseconds"))

        logger.info(f"[received] task of {len(task_text)} chars, budget {timeout_ms}ms")
        task = asyncio.create_task(self.analyze(task_text))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            logger.warning(f"[timed-out] after {timeout_ms}ms")
            task.add_done_callback(_discard)
            task.cancel()
            return Failure.from_error(AnalysisTimeoutError(int(timeout_ms)))

        exc = task.exception()
        if exc is not None:
            failure = classify(exc)
            if failure.kind == "internal":
                logger.error("Analysis failed", exc_info=exc)
            else:
                logger.warning(f"Analysis failed ({failure.kind}): {failure.details}")
            return failure
        return task.result()
