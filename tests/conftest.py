import asyncio
from typing import List

import pytest

from data_analyst.assembler import AnswerAssembler
from data_analyst.extractor import PlanExtractor
from data_analyst.orchestrator import Orchestrator
from data_analyst.results import ScrapedResult, TabularResult
from data_analyst.stages import StageRunner

FAKE_CHART = "data:image/png;base64,RkFLRQ=="

FILM_TABLE = TabularResult.of(
    ["Rank", "Peak", "Title", "Worldwide gross", "Year"],
    [
        ["1", "1", "Avatar", "$2,923,706,026", "2009"],
        ["2", "1", "Avengers: Endgame", "$2,797,800,564", "2019"],
        ["3", "1", "Avatar: The Way of Water", "$2,320,250,281", "2022"],
        ["4", "1", "Titanic", "$2,257,844,554", "1997"],
        ["5", "2", "Star Wars: The Force Awakens", "$2,071,310,218", "2015"],
        ["6", "3", "Avengers: Infinity War", "$2,048,359,754", "2018"],
        ["7", "4", "Spider-Man: No Way Home", "$1,921,847,111", "2021"],
        ["8", "5", "Jurassic World", "$1,672,319,444", "2015"],
        ["9", "6", "The Lion King", "$1,663,075,401", "2019"],
        ["10", "7", "The Avengers", "$1,518,815,515", "2012"],
    ],
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubLLM:
    def __init__(self, response: str = "42", error: Exception | None = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


class HangingLLM:
    async def complete(self, prompt: str) -> str:
        await asyncio.Event().wait()
        return ""


class StubScraper:
    def __init__(self, result: ScrapedResult | None = None):
        self.result = result or ScrapedResult(url="https://example.com", tables=(FILM_TABLE,))
        self.urls: List[str] = []

    async def fetch(self, url: str) -> ScrapedResult:
        self.urls.append(url)
        return self.result


class StubQueryEngine:
    def __init__(self, result: TabularResult | None = None, error: Exception | None = None):
        self.result = result or TabularResult.of(["n"], [[1]])
        self.error = error
        self.queries: List[str] = []

    async def query(self, sql: str) -> TabularResult:
        self.queries.append(sql)
        if self.error is not None:
            raise self.error
        return self.result


class StubCharts:
    def __init__(self):
        self.calls = []

    async def render(self, data, spec) -> str:
        self.calls.append((data, spec))
        return FAKE_CHART


@pytest.fixture
def llm():
    return StubLLM()


@pytest.fixture
def scraper():
    return StubScraper()


@pytest.fixture
def query_engine():
    return StubQueryEngine()


@pytest.fixture
def charts():
    return StubCharts()


@pytest.fixture
def runner(scraper, query_engine, llm, charts, tmp_path):
    return StageRunner(scraper, query_engine, llm, charts, file_root=str(tmp_path))


@pytest.fixture
def orchestrator(runner):
    # heuristic planning only, so the stub LLM sees answering prompts alone
    return Orchestrator(PlanExtractor(None), runner, AnswerAssembler())

