# results.py
#
# StageResult: the dataset threaded between pipeline stages. Every stage
# matches on the variant and degrades to "no data" on shapes it can't use.

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from . import config

Record = Dict[str, Any]


@dataclass(frozen=True)
class NoData:
    pass


@dataclass(frozen=True)
class TabularResult:
    headers: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]
    caption: Optional[str] = None

    @classmethod
    def of(cls, headers, rows, caption: Optional[str] = None) -> "TabularResult":
        return cls(tuple(str(h) for h in headers), tuple(tuple(r) for r in rows), caption)

    def column_index(self, name: str) -> int:
        try:
            return self.headers.index(name)
        except ValueError:
            return -1


@dataclass(frozen=True)
class RecordListResult:
    records: Tuple[Record, ...]

    @classmethod
    def of(cls, records) -> "RecordListResult":
        return cls(tuple(dict(r) for r in records))


@dataclass(frozen=True)
class ScrapedResult:
    url: str = ""
    title: str = ""
    text: str = ""
    tables: Tuple[TabularResult, ...] = field(default_factory=tuple)


StageResult = Union[NoData, TabularResult, RecordListResult, ScrapedResult]

NO_DATA = NoData()


# =========================
# Shape helpers
# =========================

def table_to_records(table: TabularResult) -> List[Record]:
    out = []
    for row in table.rows:
        out.append({h: (row[i] if i < len(row) else None) for i, h in enumerate(table.headers)})
    return out


def records_to_table(records) -> TabularResult:
    headers: List[str] = []
    for r in records:
        for k in r:
            if k not in headers:
                headers.append(k)
    return TabularResult.of(headers, [[r.get(h) for h in headers] for r in records])


def first_table(result: StageResult) -> Optional[TabularResult]:
    match result:
        case TabularResult():
            return result
        case ScrapedResult(tables=tables):
            return tables[0] if tables else None
        case RecordListResult(records=records):
            return records_to_table(records) if records else None
        case _:
            return None


def to_frame(result: StageResult) -> Optional[pd.DataFrame]:
    table = first_table(result)
    if table is None:
        return None
    return pd.DataFrame([list(r) + [None] * (len(table.headers) - len(r)) for r in table.rows],
                        columns=list(table.headers))


def describe(result: StageResult) -> str:
    """Render a dataset as prompt context for the language model."""
    match result:
        case RecordListResult(records=records):
            if not records:
                return "Empty dataset"
            sample = json.dumps(list(records[:5]), indent=2, default=str)
            return f"Dataset with {len(records)} rows. Sample data:\n{sample}"
        case TabularResult(headers=headers, rows=rows):
            sample = "\n".join(" | ".join(str(c) for c in row) for row in rows[:5])
            return f"Table with {len(rows)} rows and columns: {' | '.join(headers)}\n\nSample data:\n{sample}"
        case ScrapedResult(text=text, tables=tables):
            context = ""
            if text:
                cap = config.MAX_CONTEXT_CHARS
                context += f"Content: {text[:cap]}{'...' if len(text) > cap else ''}\n"
            if tables:
                context += f"\nTables found: {len(tables)}\n"
                for i, t in enumerate(tables, 1):
                    context += f"Table {i}: {' | '.join(t.headers)}\n"
                    context += "\n".join(" | ".join(str(c) for c in row) for row in t.rows[:3]) + "\n"
            return context or "No data provided"
        case _:
            return "No data provided"
