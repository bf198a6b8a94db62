# intake.py

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError
from starlette.datastructures import UploadFile
from starlette.requests import Request

from . import config
from .errors import MalformedRequestError
from .files import resolve_path

logger = logging.getLogger(__name__)

TASK_FILE_FIELDS = ("task", "question.txt", "questions.txt")
TASK_TEXT_FIELDS = ("taskText", "question_text")


class TaskRequest(BaseModel):
    task: str = Field(min_length=1)
    timeout: int = Field(default=config.DEFAULT_TIMEOUT_MS, gt=0)


async def _read_body(request: Request) -> Dict[str, Any]:
    ctype = (request.headers.get("content-type") or "").lower()

    if "application/json" in ctype:
        body = await request.json()
        if isinstance(body, str):
            return {"task": body}
        if not isinstance(body, dict):
            raise MalformedRequestError("Invalid request format", "JSON body must be an object or a string")
        return body

    if "multipart/form-data" in ctype or "application/x-www-form-urlencoded" in ctype:
        form = await request.form()
        out: Dict[str, Any] = {}
        if form.get("timeout"):
            out["timeout"] = form.get("timeout")
        for name in TASK_FILE_FIELDS:
            item = form.get(name)
            if isinstance(item, UploadFile):
                out["task"] = (await item.read()).decode("utf-8", "ignore")
                return out
            if isinstance(item, str) and item.strip():
                out["task"] = item
                return out
        for name in TASK_TEXT_FIELDS:
            item = form.get(name)
            if isinstance(item, str) and item.strip():
                out["task"] = item
                return out
        raise MalformedRequestError("Invalid request format", "No task provided in form data")

    raw = (await request.body()).decode("utf-8", "replace")
    return {"task": raw}


def resolve_task_text(task: str, root: Optional[str] = None) -> str:
    """Swap a file://name task for the contents of that file under the task root."""
    if not task.startswith("file://"):
        return task
    path = resolve_path(task.strip(), root)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        logger.warning(f"Error reading task file {path}: {e}")
        raise MalformedRequestError("Could not read specified file", str(e)) from e


async def parse_request(request: Request, root: Optional[str] = None) -> TaskRequest:
    try:
        body = await _read_body(request)
    except MalformedRequestError:
        raise
    except (ValueError, UnicodeDecodeError) as e:
        # json.JSONDecodeError included
        raise MalformedRequestError("Invalid request format", str(e)) from e

    try:
        req = TaskRequest.model_validate(body)
    except ValidationError as e:
        details = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise MalformedRequestError("Invalid request", details) from e

    if not req.task.strip():
        raise MalformedRequestError("Invalid request", "Task description is required")
    return TaskRequest(task=resolve_task_text(req.task, root), timeout=req.timeout)
