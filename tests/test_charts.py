import base64

import pytest

from conftest import FILM_TABLE
from data_analyst import charts
from data_analyst.charts import ChartRenderer, clean_numeric, find_column, render_sync
from data_analyst.plan import VisualizationSpec
from data_analyst.results import NO_DATA, to_frame


def decoded_size(uri: str) -> int:
    return len(base64.b64decode(uri.split(",", 1)[1]))


def test_scatter_with_regression_under_budget() -> None:
    spec = VisualizationSpec(chart_type="scatter", x_axis="rank", y_axis="peak",
                             show_regression=True, regression_style="dotted", regression_color="red")
    uri = render_sync(FILM_TABLE, spec)

    assert uri.startswith("data:image/png;base64,")
    assert decoded_size(uri) <= 100_000


@pytest.mark.parametrize("chart_type", ["line", "bar", "pie", "histogram", "heatmap"])
def test_other_chart_types_render(chart_type) -> None:
    uri = render_sync(FILM_TABLE, VisualizationSpec(chart_type=chart_type, x_axis="Rank", y_axis="Peak"))
    assert uri.startswith("data:image/png;base64,")


def test_webp_format_and_small_budget() -> None:
    uri = render_sync(FILM_TABLE, VisualizationSpec(format="webp"), max_bytes=20_000)
    assert uri.startswith("data:image/webp;base64,")


def test_no_data_still_renders() -> None:
    assert render_sync(NO_DATA, VisualizationSpec()).startswith("data:image/png;base64,")


@pytest.mark.anyio
async def test_renderer_falls_back_to_placeholder(monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("backend exploded")

    monkeypatch.setattr(charts, "render_sync", broken)
    uri = await ChartRenderer().render(FILM_TABLE, VisualizationSpec())

    assert uri.startswith("data:image/png;base64,")


def test_find_column_and_clean_numeric() -> None:
    df = to_frame(FILM_TABLE)
    assert find_column(df, "worldwide_gross") == "Worldwide gross"
    assert find_column(df, "gross") == "Worldwide gross"
    assert find_column(df, "budget") is None

    assert list(clean_numeric(df["Worldwide gross"]).head(1)) == [2923706026]
