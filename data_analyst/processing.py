# processing.py

import logging
import math
import re
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd

from .plan import ProcessingStep
from .results import (
    NO_DATA, NoData, Record, RecordListResult, ScrapedResult, StageResult, TabularResult,
    first_table, records_to_table, table_to_records,
)

logger = logging.getLogger(__name__)

_FLOAT_PREFIX = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def parse_float(value: Any) -> Optional[float]:
    """Leading-numeric parse: '12.5kg' -> 12.5, 'abc' -> None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    m = _FLOAT_PREFIX.match(str(value))
    return float(m.group(0)) if m else None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _param(params: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for n in names:
        if params.get(n) is not None:
            return params[n]
    return default


def _norm(op: Any) -> str:
    return _text(op).strip().lower().replace("-", "_").replace(" ", "_")


# =========================
# Variant plumbing
# =========================

def _map_records(result: StageResult, fn: Callable[[List[Record]], Optional[List[Record]]],
                 field: Optional[str] = None) -> StageResult:
    """Run a record-level step on any variant and rewrap into the same variant.

    fn returning None means "leave the data as it was". A field missing from
    a table's headers also leaves the data unchanged.
    """
    match result:
        case RecordListResult(records=records):
            out = fn([dict(r) for r in records])
            return result if out is None else RecordListResult.of(out)
        case TabularResult():
            if field is not None and result.column_index(field) == -1:
                return result
            out = fn(table_to_records(result))
            if out is None:
                return result
            table = records_to_table(out) if out else TabularResult.of(result.headers, [], result.caption)
            return TabularResult(table.headers, table.rows, result.caption)
        case ScrapedResult(tables=tables) if tables:
            head = _map_records(tables[0], fn, field)
            return ScrapedResult(result.url, result.title, result.text, (head,) + tables[1:])
        case _:
            return result


# =========================
# Steps
# =========================

def _matches(value: Any, operator: str, target: Any) -> bool:
    if operator in ("equals", "not_equals"):
        a, b = parse_float(value), parse_float(target)
        if a is not None and b is not None and _text(value).strip() and _text(target).strip():
            same = a == b
        else:
            same = _text(value).strip().lower() == _text(target).strip().lower()
        return same if operator == "equals" else not same
    if operator in ("greater_than", "less_than"):
        a, b = parse_float(value), parse_float(target)
        if a is None or b is None:
            return False
        return a > b if operator == "greater_than" else a < b
    v, t = _text(value).lower(), _text(target).lower()
    if operator == "contains":
        return t in v
    if operator == "starts_with":
        return v.startswith(t)
    if operator == "ends_with":
        return v.endswith(t)
    return True


def filter_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    field = _param(params, "field", "column")
    operator = _norm(_param(params, "operator", "op", default=""))
    value = params.get("value")
    if field is None:
        return result
    return _map_records(result, lambda rs: [r for r in rs if _matches(r.get(field), operator, value)], field)


def _to_date(value: Any) -> Optional[str]:
    ts = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(ts) else ts.isoformat()


_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "to_number": lambda v: parse_float(v) or 0,
    "to_string": _text,
    "to_date":   _to_date,
    "uppercase": lambda v: _text(v).upper(),
    "lowercase": lambda v: _text(v).lower(),
    "trim":      lambda v: _text(v).strip(),
}


def transform_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    field = _param(params, "field", "column")
    fn = _TRANSFORMS.get(_norm(_param(params, "operation", "transform", default="")))
    if field is None or fn is None:
        return result
    target = _param(params, "new_field", "newField", default=field)

    def apply(records):
        return [{**r, target: fn(r.get(field))} for r in records]

    return _map_records(result, apply, field)


def _reduce(values: List[float], operation: str) -> Any:
    if operation == "sum":
        return sum(values)
    if operation in ("avg", "average", "mean"):
        return sum(values) / len(values) if values else 0
    if operation == "min":
        return min(values) if values else None
    if operation == "max":
        return max(values) if values else None
    if operation == "count":
        return len(values)
    raise KeyError(operation)


# operation name -> pandas reduction; unknown operations keep each group's first value
_PANDAS_AGG = {
    "sum": "sum", "avg": "mean", "average": "mean", "mean": "mean",
    "min": "min", "max": "max", "count": "count",
}


def _scalar(value: Any) -> Any:
    return value.item() if hasattr(value, "item") else value


def _aggregate_records(result: StageResult, field: str) -> Optional[List[Record]]:
    if isinstance(result, RecordListResult):
        return [dict(r) for r in result.records]
    table = first_table(result)
    if table is None or table.column_index(field) == -1:
        return None
    return table_to_records(table)


def aggregate_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    field = _param(params, "field", "column")
    group_by = _param(params, "group_by", "groupBy")
    operation = _norm(_param(params, "operation", "function", default=""))
    if field is None:
        return result

    def values_of(records):
        return [parse_float(r.get(field)) or 0 for r in records]

    if group_by is None:
        records = _aggregate_records(result, field)
        if records is None:
            return result
        try:
            total = _reduce(values_of(records), operation)
        except KeyError:
            return result
        return RecordListResult.of([{field: total}])

    def apply(records):
        df = pd.DataFrame({"key": [r.get(group_by) for r in records], "value": values_of(records)})
        grouped = df.groupby("key", sort=False, dropna=False)["value"].agg(_PANDAS_AGG.get(operation, "first"))
        return [{group_by: _scalar(k), field: _scalar(v)} for k, v in grouped.items()]

    return _map_records(result, apply, field)


def _compare(a: Any, b: Any) -> int:
    x, y = parse_float(a), parse_float(b)
    if x is not None and y is not None:
        return (x > y) - (x < y)
    s, t = _text(a).lower(), _text(b).lower()
    return (s > t) - (s < t)


def sort_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    field = _param(params, "field", "column", "by")
    if field is None:
        return result
    descending = _norm(_param(params, "direction", "order", default="asc")) in ("desc", "descending")
    key = cmp_to_key(lambda a, b: _compare(a.get(field), b.get(field)))
    return _map_records(result, lambda rs: sorted(rs, key=key, reverse=descending), field)


def join_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    # needs a second dataset, which plans can't express yet
    logger.warning("Join operation not implemented; passing data through")
    return result


def _combine(x: float, y: float, operation: str) -> float:
    if operation == "add":
        return x + y
    if operation == "subtract":
        return x - y
    if operation == "multiply":
        return x * y
    if operation == "divide":
        return x / y if y != 0 else 0
    return 0


def calculate_data(result: StageResult, params: Dict[str, Any]) -> StageResult:
    f1 = _param(params, "field1", "left")
    f2 = _param(params, "field2", "right")
    operation = _norm(_param(params, "operation", "op", default=""))
    target = _param(params, "new_field", "newField", default="result")
    if f1 is None or f2 is None:
        return result

    def apply(records):
        return [
            {**r, target: _combine(parse_float(r.get(f1)) or 0, parse_float(r.get(f2)) or 0, operation)}
            for r in records
        ]

    return _map_records(result, apply)


STEP_HANDLERS: Dict[str, Callable[[StageResult, Dict[str, Any]], StageResult]] = {
    "filter":    filter_data,
    "transform": transform_data,
    "aggregate": aggregate_data,
    "sort":      sort_data,
    "join":      join_data,
    "calculate": calculate_data,
}


def apply_step(result: StageResult, step: ProcessingStep) -> StageResult:
    handler = STEP_HANDLERS.get(_norm(step.type))
    if handler is None:
        logger.warning(f"Unknown processing step type: {step.type}")
        return result
    logger.info(f"Applying processing step: {step.type} {step.operation}")
    return handler(result, step.parameters or {})


def process_data(result: StageResult, steps: Iterable[ProcessingStep]) -> StageResult:
    """Apply steps in order. A step that blows up leaves no data for the rest."""
    for step in steps:
        try:
            result = apply_step(result, step)
        except Exception as e:
            logger.warning(f"Processing step {step.type} failed, continuing without data: {e}")
            result = NO_DATA
    return result


# =========================
# Utilities
# =========================

def validate_data(result: StageResult) -> bool:
    match result:
        case RecordListResult(records=records):
            return len(records) > 0
        case TabularResult(headers=headers, rows=rows):
            return len(headers) > 0 and len(rows) > 0
        case ScrapedResult():
            table = first_table(result)
            return table is not None and validate_data(table)
        case _:
            return False


def summarize(result: StageResult) -> Optional[Dict[str, Any]]:
    match result:
        case NoData():
            return None
        case RecordListResult(records=records):
            return {"type": "records", "length": len(records),
                    "columns": list(records[0].keys()) if records else [],
                    "sample": [dict(r) for r in records[:3]]}
        case TabularResult(headers=headers, rows=rows):
            return {"type": "table", "columns": list(headers), "rowCount": len(rows),
                    "sample": [list(r) for r in rows[:3]]}
        case ScrapedResult(url=url, text=text, tables=tables):
            return {"type": "scraped", "url": url, "contentLength": len(text), "tablesCount": len(tables),
                    "firstTable": summarize(tables[0]) if tables else None}
    return None
