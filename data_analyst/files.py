# files.py

import json
import logging
import mimetypes
import os
from typing import Optional

import pandas as pd

from . import config
from .errors import MalformedRequestError
from .results import RecordListResult, ScrapedResult, StageResult
from .scraper import frame_to_table

logger = logging.getLogger(__name__)

TEXT_EXTS = {".txt", ".md", ".rtf", ".html", ".htm", ".xml", ".yaml", ".yml"}


def _guess_ext(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    if not ext:
        mt, _ = mimetypes.guess_type(path)
        if mt and "/" in mt:
            ext = "." + mt.split("/")[-1]
    return ext


def resolve_path(path: str, root: Optional[str] = None) -> str:
    """Map a name (or file:// reference) to a real path inside root; raises when it escapes root."""
    if path.startswith("file://"):
        path = path[len("file://"):]
    base = os.path.realpath(root or config.TASK_FILE_ROOT)
    full = os.path.realpath(os.path.join(base, path.lstrip("/")))
    if os.path.commonpath([base, full]) != base:
        raise MalformedRequestError("Could not read specified file", f"{path} is outside the task file directory")
    return full


def load_file(path: str, root: Optional[str] = None) -> StageResult:
    """Load a local data file as a StageResult. Raises on unreadable files."""
    full = resolve_path(path, root)
    ext = _guess_ext(full)
    logger.info(f"Loading data file: {full}")

    if ext in (".csv", ".tsv"):
        df = pd.read_csv(full, sep="\t" if ext == ".tsv" else ",")
        return frame_to_table(df)
    if ext in (".xls", ".xlsx", ".ods"):
        xls = pd.ExcelFile(full)
        tables = tuple(frame_to_table(xls.parse(s), caption=str(s)) for s in xls.sheet_names)
        return tables[0] if len(tables) == 1 else ScrapedResult(url=full, tables=tables)
    if ext in (".parquet", ".pq"):
        return frame_to_table(pd.read_parquet(full))
    if ext == ".json":
        with open(full, "r", encoding="utf-8") as f:
            obj = json.load(f)
        if isinstance(obj, list) and all(isinstance(x, dict) for x in obj):
            return RecordListResult.of(obj)
        return ScrapedResult(url=full, text=json.dumps(obj))

    with open(full, "r", encoding="utf-8", errors="ignore") as f:
        text = f.read()
    if ext not in TEXT_EXTS:
        logger.warning(f"Unknown file type {ext or '(none)'}; reading {full} as text")
    return ScrapedResult(url=full, text=text)
