# app.py

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from data_analyst import config
from data_analyst.errors import Failure, MalformedRequestError
from data_analyst.intake import parse_request
from data_analyst.orchestrator import Orchestrator

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# =========================
# FastAPI app + shared client
# =========================

@asynccontextmanager
async def lifespan(app: FastAPI):
    headers = {"User-Agent": config.USER_AGENT}
    client = httpx.AsyncClient(
        timeout=config.HTTP_TIMEOUT_S,
        http2=True,
        headers=headers,
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20, keepalive_expiry=60.0),
    )
    app.state.orchestrator = Orchestrator.from_client(client)
    try:
        yield
    finally:
        await client.aclose()

app = FastAPI(title=config.SERVICE_NAME, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"]
)


def failure_response(failure: Failure) -> JSONResponse:
    return JSONResponse(status_code=failure.status_code, content=failure.to_payload())

# =========================
# /api endpoint
# =========================

@app.post("/api")
@app.post("/api/")
async def api(request: Request):
    try:
        req = await parse_request(request)
    except MalformedRequestError as e:
        logger.warning(f"Rejected request: {e.details}")
        return failure_response(Failure.from_error(e))

    result = await request.app.state.orchestrator.handle(req.task, req.timeout)
    if isinstance(result, Failure):
        return failure_response(result)
    return JSONResponse(content=result)

# Health
@app.get("/")
def root():
    return {
        "status": "healthy",
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

# Local run
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
