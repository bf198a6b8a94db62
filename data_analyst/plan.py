# plan.py

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

TaskKind = Literal["web_scrape", "structured_query", "mixed", "unclassified"]
SourceKind = Literal["web", "query", "file"]
AnswerKind = Literal["count", "calculation", "correlation", "visualization", "comparison", "text", "date"]
ExpectedFormat = Literal["number", "string", "boolean", "array", "object", "base64_image"]
OutputShape = Literal["ordered_array", "keyed_object", "free_text"]
ChartType = Literal["scatter", "line", "bar", "pie", "histogram", "heatmap"]
LineStyle = Literal["solid", "dashed", "dotted"]
ImageFormat = Literal["png", "webp", "jpeg"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class DataSource(_Frozen):
    kind: SourceKind
    url: Optional[str] = None
    query: Optional[str] = None
    file_path: Optional[str] = None

    @model_validator(mode="after")
    def _has_locator(self):
        locator = {"web": self.url, "query": self.query, "file": self.file_path}[self.kind]
        if not locator:
            raise ValueError(f"{self.kind} data source needs a locator")
        return self


class ProcessingStep(_Frozen):
    # free-form on purpose: unknown step types pass through the transformation stage
    type: str
    operation: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class VisualizationSpec(_Frozen):
    chart_type: ChartType = "scatter"
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    title: Optional[str] = None
    show_regression: bool = False
    regression_style: LineStyle = "solid"
    regression_color: Optional[str] = None
    width: int = 800
    height: int = 600
    format: ImageFormat = "png"


class Question(_Frozen):
    text: str
    answer_kind: AnswerKind = "text"
    expected_format: ExpectedFormat = "string"
    visualization: Optional[VisualizationSpec] = None

    @model_validator(mode="after")
    def _visualization_consistent(self):
        if self.answer_kind == "visualization":
            if self.expected_format != "base64_image" or self.visualization is None:
                raise ValueError("visualization questions need base64_image format and a visualization spec")
        elif self.visualization is not None:
            raise ValueError("only visualization questions carry a visualization spec")
        return self


class TaskPlan(_Frozen):
    kind: TaskKind = "mixed"
    data_source: Optional[DataSource] = None
    processing_steps: Tuple[ProcessingStep, ...] = ()
    questions: Tuple[Question, ...] = Field(min_length=1)
    output_shape: OutputShape = "ordered_array"
    raw_text: str = ""

    @model_validator(mode="after")
    def _source_matches_kind(self):
        if self.kind == "unclassified" and self.data_source is not None:
            raise ValueError("an unclassified task cannot declare a data source")
        return self

    @property
    def visualization_count(self) -> int:
        return sum(1 for q in self.questions if q.answer_kind == "visualization")
