# config.py

import os

# =========================
# LLM (OpenAI-compatible chat completions, e.g. via aipipe)
# =========================

LLM_API_URL      = os.getenv("LLM_API_URL", "https://aipipe.org/openai/v1/chat/completions")
LLM_API_TOKEN    = os.getenv("LLM_API_TOKEN") or os.getenv("OPENAI_API_KEY")  # unset -> local deterministic model
LLM_MODEL        = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_TEMPERATURE  = float(os.getenv("LLM_TEMPERATURE", "0.1"))

MAX_LLM_RETRIES  = int(os.getenv("MAX_LLM_RETRIES", "3"))
LLM_BACKOFF_S    = float(os.getenv("LLM_BACKOFF_S", "0.5"))
LLM_TIMEOUT_S    = int(os.getenv("LLM_TIMEOUT_S", "20"))
MAX_TOK_ANSWER   = int(os.getenv("MAX_TOK_ANSWER", "2000"))

# =========================
# Fetching + time budget
# =========================

HTTP_TIMEOUT_S     = int(os.getenv("HTTP_TIMEOUT_S", "10"))
DEFAULT_TIMEOUT_MS = int(os.getenv("DEFAULT_TIMEOUT_MS", "180000"))  # 3 minutes
USER_AGENT         = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
)

# =========================
# Output caps
# =========================

MAX_IMAGE_BYTES   = int(os.getenv("MAX_IMAGE_BYTES", "100000"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "1000"))

TASK_FILE_ROOT = os.getenv("TASK_FILE_ROOT", os.getcwd())
LOG_LEVEL      = os.getenv("LOG_LEVEL", "INFO").upper()

SERVICE_NAME    = "Data Analyst Agent API"
SERVICE_VERSION = "1.0.0"
