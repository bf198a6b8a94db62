# extractor.py
#
# Free-text task -> TaskPlan. The heuristic parser is deterministic and always
# succeeds; the LLM-assisted parse is tried first and thrown away on any doubt.

import logging
import re
from typing import Any, Dict, List, Optional

from matplotlib.colors import is_color_like
from pydantic import ValidationError

from .llm import LanguageModel, parse_llm_json_object
from .plan import DataSource, Question, TaskPlan, VisualizationSpec

logger = logging.getLogger(__name__)

# =========================
# Keyword tables (order is precedence)
# =========================

ANSWER_KIND_KEYWORDS = [
    ("count",         ["how many", "count", "number of"]),
    ("correlation",   ["correlation", "relationship"]),
    ("visualization", ["plot", "chart", "graph", "visualization"]),
    ("calculation",   ["calculate", "compute", "average", "sum"]),
    ("comparison",    ["compare", "versus", "vs"]),
    ("date",          ["date", "time", "when", "earliest", "latest"]),
]

EXPECTED_FORMAT_KEYWORDS = [
    ("base64_image", ["base64", "base-64", "data:image", "visualization", "plot", "chart"]),
    ("number",       ["how many", "count", "number", "correlation"]),
    ("array",        ["list", "array"]),
    ("boolean",      ["true", "false", "yes", "no"]),
]

VISUALIZATION_KEYWORDS = ["plot", "chart", "graph", "scatterplot", "scatter plot", "visualization", "draw"]

_URL_RE = re.compile(r"https?://[^\s]+")
_QUERY_RE = re.compile(r"\bSELECT\b[\s\S]*?\bFROM\b[\s\S]*?;", re.I)
_NUMBERED_RE = re.compile(r"^[ \t]*(\d+)\.\s+", re.M)
_INLINE_ITEM_RE = re.compile(r"(?<!\S)(\d+)\.\s+")
_COLOR_RE = re.compile(r"(\w+)\s+regression")
_AXES_RE = re.compile(r"(\w+)\s+and\s+(\w+)")

PLAN_PROMPT = """
Analyze this data analysis task and extract the structured information:

Task: {task}

Extract and return a JSON object with the following structure:
{{
  "kind": "web_scrape" | "structured_query" | "mixed" | "unclassified",
  "data_source": {{
    "kind": "web" | "query" | "file",
    "url": "string if web scraping",
    "query": "SQL string if database query",
    "file_path": "string if file"
  }},
  "processing_steps": [
    {{
      "type": "filter" | "transform" | "aggregate" | "sort" | "join" | "calculate",
      "operation": "description of operation",
      "parameters": {{}}
    }}
  ],
  "questions": [
    {{
      "text": "exact question text",
      "answer_kind": "count" | "calculation" | "correlation" | "visualization" | "comparison" | "text" | "date",
      "expected_format": "number" | "string" | "boolean" | "array" | "object" | "base64_image",
      "visualization": {{
        "chart_type": "scatter" | "line" | "bar" | "pie" | "histogram" | "heatmap",
        "x_axis": "column name",
        "y_axis": "column name",
        "title": "chart title",
        "show_regression": true,
        "regression_style": "solid" | "dashed" | "dotted",
        "regression_color": "color name",
        "width": 800,
        "height": 600,
        "format": "png" | "webp" | "jpeg"
      }}
    }}
  ],
  "output_shape": "ordered_array" | "keyed_object" | "free_text"
}}

Leave out data_source when the task names none, and leave out visualization for questions that need no chart.
Return only the JSON object, no additional text.
"""


# =========================
# Heuristic classifiers
# =========================

def _first_match(text: str, table, default: str) -> str:
    low = text.lower()
    for label, words in table:
        if any(w in low for w in words):
            return label
    return default


def classify_answer_kind(text: str) -> str:
    return _first_match(text, ANSWER_KIND_KEYWORDS, "text")


def classify_expected_format(text: str) -> str:
    return _first_match(text, EXPECTED_FORMAT_KEYWORDS, "string")


def wants_visualization(text: str) -> bool:
    low = text.lower()
    return any(w in low for w in VISUALIZATION_KEYWORDS)


def parse_visualization_spec(text: str) -> VisualizationSpec:
    low = text.lower()
    spec: Dict[str, Any] = {"chart_type": "scatter", "width": 800, "height": 600, "format": "png"}

    if "scatterplot" in low or "scatter plot" in low:
        spec["chart_type"] = "scatter"
    elif "line" in low or "trend" in low:
        spec["chart_type"] = "line"
    elif "bar" in low or "column" in low:
        spec["chart_type"] = "bar"
    elif "pie" in low:
        spec["chart_type"] = "pie"
    elif "histogram" in low:
        spec["chart_type"] = "histogram"
    elif "heatmap" in low:
        spec["chart_type"] = "heatmap"

    if "regression" in low:
        spec["show_regression"] = True
        if "dotted" in low:
            spec["regression_style"] = "dotted"
        elif "dashed" in low:
            spec["regression_style"] = "dashed"
        else:
            spec["regression_style"] = "solid"
        m = _COLOR_RE.search(low)
        if m and is_color_like(m.group(1)):
            spec["regression_color"] = m.group(1)

    m = _AXES_RE.search(low)
    if m:
        spec["x_axis"], spec["y_axis"] = m.group(1), m.group(2)

    for fmt in ("webp", "jpeg"):
        if fmt in low:
            spec["format"] = fmt

    return VisualizationSpec(**spec)


def detect_output_shape(text: str) -> str:
    if "JSON object" in text:
        return "keyed_object"
    return "ordered_array"


def detect_data_source(text: str) -> Optional[DataSource]:
    source = None
    m = _URL_RE.search(text)
    if m:
        source = DataSource(kind="web", url=m.group(0).rstrip(".,;'\""))
    # a query fragment wins over a URL
    q = _QUERY_RE.search(text)
    if q:
        source = DataSource(kind="query", query=q.group(0).strip())
    return source


def split_questions(text: str) -> List[str]:
    """Numbered items; only the first may sit mid-line, right before a line-leading item numbered one higher."""
    starts = list(_NUMBERED_RE.finditer(text))
    if not starts:
        return []
    follow = int(starts[0].group(1))
    inline = [m for m in _INLINE_ITEM_RE.finditer(text, 0, starts[0].start()) if int(m.group(1)) == follow - 1]
    if inline:
        starts.insert(0, inline[-1])
    out = []
    for i, m in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(text)
        body = text[m.end():end].strip()
        if body:
            out.append(body)
    return out


def build_question(text: str, answer_kind: Optional[str] = None, expected_format: Optional[str] = None,
                   visualization: Any = None) -> Question:
    kind = answer_kind or classify_answer_kind(text)
    fmt = expected_format or classify_expected_format(text)
    if kind == "visualization" or wants_visualization(text):
        if isinstance(visualization, dict):
            viz = VisualizationSpec.model_validate(visualization)
        elif isinstance(visualization, VisualizationSpec):
            viz = visualization
        else:
            viz = parse_visualization_spec(text)
        return Question(text=text, answer_kind="visualization", expected_format="base64_image", visualization=viz)
    return Question(text=text, answer_kind=kind, expected_format=fmt)


def _kind_for(source: Optional[DataSource]) -> str:
    if source is None:
        return "unclassified"
    return {"web": "web_scrape", "query": "structured_query"}.get(source.kind, "mixed")


def heuristic_plan(task_text: str) -> TaskPlan:
    text = task_text.strip()
    source = detect_data_source(text)
    numbered = split_questions(text)
    # without a numbered list the whole text is one free-text question
    questions = [build_question(q) for q in numbered] or [build_question(text, "text", "string")]
    return TaskPlan(
        kind=_kind_for(source),
        data_source=source,
        questions=tuple(questions),
        output_shape=detect_output_shape(text),
        raw_text=task_text,
    )


# =========================
# Assisted path
# =========================

def plan_from_assisted(obj: Dict[str, Any], task_text: str) -> TaskPlan:
    """Validate an LLM-proposed plan; raises on anything unusable."""
    questions = []
    for q in obj.get("questions") or []:
        if isinstance(q, str):
            q = {"text": q}
        if not isinstance(q, dict) or not str(q.get("text") or "").strip():
            raise ValueError(f"unusable question entry: {q!r}")
        questions.append(build_question(
            str(q["text"]).strip(),
            q.get("answer_kind"),
            q.get("expected_format"),
            q.get("visualization"),
        ))
    if not questions:
        questions = [build_question(task_text.strip(), "text", "string")]

    source = obj.get("data_source") or None
    if source is not None:
        source = DataSource.model_validate(source)
    kind = obj.get("kind") or _kind_for(source)
    if kind == "unclassified" and source is not None:
        kind = _kind_for(source)

    return TaskPlan(
        kind=kind,
        data_source=source,
        processing_steps=tuple(obj.get("processing_steps") or ()),
        questions=tuple(questions),
        output_shape=obj.get("output_shape") or detect_output_shape(task_text),
        raw_text=task_text,
    )


class PlanExtractor:
    def __init__(self, llm: Optional[LanguageModel] = None):
        self.llm = llm

    async def extract(self, task_text: str) -> TaskPlan:
        plan = None
        if self.llm is not None:
            plan = await self._assisted(task_text)
        if plan is None:
            logger.info("Using heuristic task parsing")
            plan = heuristic_plan(task_text)
        return plan

    async def _assisted(self, task_text: str) -> Optional[TaskPlan]:
        try:
            raw = await self.llm.complete(PLAN_PROMPT.format(task=task_text))
            return plan_from_assisted(parse_llm_json_object(raw), task_text)
        except (ValueError, ValidationError, TypeError) as e:
            logger.warning(f"Assisted plan rejected: {e}")
        except Exception as e:
            logger.warning(f"Assisted planning unavailable: {type(e).__name__}: {e}")
        return None
