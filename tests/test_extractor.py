import json

import pytest

from conftest import StubLLM
from data_analyst.extractor import (
    PlanExtractor,
    classify_answer_kind,
    classify_expected_format,
    heuristic_plan,
    parse_visualization_spec,
    split_questions,
)

FILMS_TASK = """Scrape the list of highest grossing films from Wikipedia. It is at the URL:
https://en.wikipedia.org/wiki/List_of_highest-grossing_films

Answer the following questions and respond with a JSON array of strings containing the answer.

1. How many $2 bn movies were released before 2020?
2. Which is the earliest film that grossed over $1.5 bn?
3. What's the correlation between the Rank and Peak?
4. Draw a scatterplot of Rank and Peak along with a dotted red regression line through it.
   Return as a base-64 encoded data URI under 100,000 bytes.
"""


def test_plain_text_becomes_single_text_question() -> None:
    plan = heuristic_plan("  Tell me about the weather today  ")

    assert len(plan.questions) == 1
    assert plan.questions[0].text == "Tell me about the weather today"
    assert plan.questions[0].answer_kind == "text"
    assert plan.questions[0].expected_format == "string"
    assert plan.data_source is None
    assert plan.kind == "unclassified"
    assert plan.output_shape == "ordered_array"


def test_json_object_selects_keyed_shape() -> None:
    plan = heuristic_plan("Respond with a JSON object keyed by question: what is the capital of France")
    assert plan.output_shape == "keyed_object"


def test_json_object_wins_when_both_shapes_mentioned() -> None:
    plan = heuristic_plan("Return a JSON object whose values are each a JSON array")
    assert plan.output_shape == "keyed_object"


def test_films_task_plan() -> None:
    plan = heuristic_plan(FILMS_TASK)

    assert plan.kind == "web_scrape"
    assert plan.data_source.kind == "web"
    assert plan.data_source.url == "https://en.wikipedia.org/wiki/List_of_highest-grossing_films"
    assert plan.output_shape == "ordered_array"
    assert [q.answer_kind for q in plan.questions] == ["count", "date", "correlation", "visualization"]
    assert plan.questions[0].expected_format == "number"
    assert plan.questions[2].expected_format == "number"

    chart = plan.questions[3]
    assert chart.expected_format == "base64_image"
    assert chart.visualization.chart_type == "scatter"
    assert chart.visualization.show_regression is True
    assert chart.visualization.regression_style == "dotted"
    assert chart.visualization.regression_color == "red"
    assert (chart.visualization.x_axis, chart.visualization.y_axis) == ("rank", "peak")
    assert "base-64" in chart.text


def test_query_fragment_beats_url() -> None:
    plan = heuristic_plan("See https://example.com/data then run SELECT name FROM films WHERE year > 2000; please")

    assert plan.kind == "structured_query"
    assert plan.data_source.kind == "query"
    assert plan.data_source.query == "SELECT name FROM films WHERE year > 2000;"


def test_numbering_must_lead_the_line() -> None:
    assert split_questions("We moved to version 2. It broke things") == []
    assert split_questions("1. first\n2. second\n   continued") == ["first", "second\n   continued"]
    assert split_questions("Items: 1. first\n2. second") == ["first", "second"]
    # an inline number only counts right before the next line-leading item
    assert split_questions("Since 1999. we ask:\n1. first") == ["first"]


def test_count_outranks_visualization_in_precedence() -> None:
    assert classify_answer_kind("count the rows and plot them") == "count"

    plan = heuristic_plan("count the rows and plot them")
    assert plan.questions[0].answer_kind == "visualization"
    assert plan.questions[0].visualization is not None


@pytest.mark.parametrize(
    "text,kind",
    [
        ("What is the relationship between x and y", "correlation"),
        ("Compute the mean", "calculation"),
        ("Compare A versus B", "comparison"),
        ("When did it happen", "date"),
        ("Who won", "text"),
    ],
)
def test_answer_kind_keywords(text, kind) -> None:
    assert classify_answer_kind(text) == kind


def test_expected_format_precedence() -> None:
    assert classify_expected_format("count and chart") == "base64_image"
    assert classify_expected_format("the number of rows in a list") == "number"
    assert classify_expected_format("list the titles") == "array"
    assert classify_expected_format("is it true") == "boolean"
    assert classify_expected_format("which film") == "string"


def test_visualization_subparser_defaults() -> None:
    spec = parse_visualization_spec("Make a graph")
    assert spec.chart_type == "scatter"
    assert spec.show_regression is False
    assert (spec.width, spec.height, spec.format) == (800, 600, "png")

    spec = parse_visualization_spec("bar chart of sales with a dashed regression")
    assert spec.chart_type == "bar"
    assert spec.regression_style == "dashed"
    # "dashed" is not a color
    assert spec.regression_color is None


def test_unnumbered_task_is_one_free_text_question() -> None:
    plan = heuristic_plan("How many items in [1,2,3,4,5]?")

    assert len(plan.questions) == 1
    assert plan.questions[0].text == "How many items in [1,2,3,4,5]?"
    assert plan.questions[0].answer_kind == "text"
    assert plan.questions[0].expected_format == "string"
    assert plan.data_source is None


def test_first_numbered_item_may_sit_mid_line() -> None:
    plan = heuristic_plan(
        "Answer these: 1. How many $2 bn movies were released before 2020?\n"
        "2. Which is the earliest film that grossed over $1.5 bn?"
    )

    assert [q.text for q in plan.questions] == [
        "How many $2 bn movies were released before 2020?",
        "Which is the earliest film that grossed over $1.5 bn?",
    ]
    assert [q.answer_kind for q in plan.questions] == ["count", "date"]


def test_heuristic_plan_is_deterministic() -> None:
    assert heuristic_plan(FILMS_TASK) == heuristic_plan(FILMS_TASK)


@pytest.mark.anyio
async def test_extract_falls_back_on_unparseable_assist() -> None:
    extractor = PlanExtractor(StubLLM("I could not do that"))
    first = await extractor.extract(FILMS_TASK)
    second = await extractor.extract(FILMS_TASK)

    assert first == heuristic_plan(FILMS_TASK)
    assert first == second


@pytest.mark.anyio
async def test_extract_falls_back_when_assist_raises() -> None:
    extractor = PlanExtractor(StubLLM(error=RuntimeError("network down")))
    plan = await extractor.extract("How many items in [1,2,3,4,5]?")
    assert plan.questions[0].answer_kind == "text"


@pytest.mark.anyio
async def test_extract_uses_valid_assisted_plan() -> None:
    assisted = {
        "kind": "structured_query",
        "data_source": {"kind": "query", "query": "SELECT 1 AS n;"},
        "processing_steps": [{"type": "sort", "operation": "sort by n", "parameters": {"field": "n"}}],
        "questions": [
            {"text": "What is n?", "answer_kind": "calculation", "expected_format": "number"},
            {"text": "Plot n", "answer_kind": "visualization", "expected_format": "base64_image"},
        ],
        "output_shape": "keyed_object",
    }
    llm = StubLLM("```json\n" + json.dumps(assisted) + "\n```")
    plan = await PlanExtractor(llm).extract("some task")

    assert plan.kind == "structured_query"
    assert plan.data_source.query == "SELECT 1 AS n;"
    assert plan.processing_steps[0].parameters == {"field": "n"}
    assert plan.output_shape == "keyed_object"
    assert plan.questions[1].visualization is not None
    assert plan.raw_text == "some task"


@pytest.mark.anyio
async def test_extract_rejects_invalid_assisted_plan() -> None:
    assisted = {"questions": [{"text": "How many rows?", "answer_kind": "guess"}]}
    plan = await PlanExtractor(StubLLM(json.dumps(assisted))).extract("How many rows?")

    assert plan == heuristic_plan("How many rows?")


@pytest.mark.anyio
async def test_extract_synthesizes_question_when_assist_has_none() -> None:
    plan = await PlanExtractor(StubLLM(json.dumps({"questions": []}))).extract("Describe the data")

    assert len(plan.questions) == 1
    assert plan.questions[0].text == "Describe the data"
    assert plan.output_shape == "ordered_array"
