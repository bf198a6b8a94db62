# assembler.py

import logging
from typing import Any, Dict, List, Sequence

from .charts import tiny_placeholder_png
from .plan import TaskPlan

logger = logging.getLogger(__name__)

VISUALIZATION_PLACEHOLDER = "__VISUALIZATION_PLACEHOLDER__"
CHART_KEY_HINTS = ("plot", "chart", "base64")


def is_chart_payload(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:image/")


def _unfilled() -> str:
    return tiny_placeholder_png("plot unavailable")


def substitute_placeholders(answers: Sequence[Any], charts: Sequence[str]) -> List[Any]:
    """Fill chart slots in order; a chart with no slot of its own lands in the last element."""
    out = list(answers)
    pending = list(charts)
    for i, v in enumerate(out):
        if v == VISUALIZATION_PLACEHOLDER:
            out[i] = pending.pop(0) if pending else _unfilled()
    if pending and out and not is_chart_payload(out[-1]):
        logger.warning("No chart placeholder found; replacing the final answer with the chart")
        out[-1] = pending.pop(0)
    return out


def substitute_in_object(obj: Dict[str, Any], charts: Sequence[str]) -> Dict[str, Any]:
    out = dict(obj)
    pending = list(charts)
    for k, v in out.items():
        if v == VISUALIZATION_PLACEHOLDER:
            out[k] = pending.pop(0) if pending else _unfilled()
    for k, v in out.items():
        if not pending:
            break
        if any(h in k.lower() for h in CHART_KEY_HINTS) and not is_chart_payload(v):
            logger.warning(f"No chart placeholder found; filling chart-like key {k[:60]!r}")
            out[k] = pending.pop(0)
    return out


class AnswerAssembler:
    def assemble(self, plan: TaskPlan, answers: Sequence[Any], charts: Sequence[str] = ()) -> Any:
        n = len(plan.questions)
        slots = list(answers[:n])
        if len(answers) != n:
            logger.warning(f"Expected {n} answers, got {len(answers)}; padding/truncating to fit")
            slots += [None] * (n - len(slots))

        if plan.output_shape == "keyed_object":
            obj: Dict[str, Any] = {}
            for q, a in zip(plan.questions, slots):
                # identical question text: the later answer wins
                obj[q.text] = a
            return substitute_in_object(obj, charts)

        filled = substitute_placeholders(slots, charts)
        if plan.output_shape == "free_text":
            if len(filled) == 1 and isinstance(filled[0], str):
                return filled[0]
            return "\n".join(str(a) for a in filled)
        return filled
