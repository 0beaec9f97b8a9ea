import os
import json
import time
import uuid
import secrets
import pathlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Any, Iterable, Iterator, Optional, Tuple

import httpx
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from jose import jwt
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from openai import OpenAI, APIConnectionError, APIError, APIStatusError

DOTENV_LOADED = load_dotenv()
logger = logging.getLogger("transcript_assistant")


# -----------------------------
# Configuration (env vars)
# -----------------------------
# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_PROMPT_ID = os.getenv("OPENAI_PROMPT_ID")
OPENAI_PROMPT_VERSION = os.getenv("OPENAI_PROMPT_VERSION")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
VECTOR_STORE_ID = os.getenv("OPENAI_VECTOR_STORE_ID")

# System instructions (only used when no stored prompt is configured)
SYSTEM_INSTRUCTIONS_PATH = os.getenv("SYSTEM_INSTRUCTIONS_PATH", "system_instructions.txt")
DEFAULT_SYSTEM_INSTRUCTIONS = (
    "You are a personal assistant with access to the user's podcast and business meeting transcripts. "
    "Answer questions using the transcripts when they are relevant. "
    "If the transcripts don't contain the answer, say so instead of guessing."
)
SYSTEM_INSTRUCTIONS = DEFAULT_SYSTEM_INSTRUCTIONS
SYSTEM_INSTRUCTIONS_SOURCE = "default"
SYSTEM_INSTRUCTIONS_PATH_RESOLVED: Optional[str] = None

# Chat backend: "openai" (Responses API) or "n8n" (workflow webhook)
CHAT_BACKEND = os.getenv("CHAT_BACKEND", "openai").strip().lower()
N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL")
N8N_JWT_TOKEN = os.getenv("N8N_JWT_TOKEN")
N8N_JWT_SECRET = os.getenv("N8N_JWT_SECRET")
N8N_JWT_TTL_SECONDS = 300

# App access
APP_PASSWORD = os.getenv("APP_PASSWORD")
AUTH_REQUIRED = bool(APP_PASSWORD)
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(12 * 60 * 60)))

UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LIST_PAGE_LIMIT = 100
DETAIL_LOOKUP_WORKERS = 8
NO_RESPONSE_TEXT = "No response from AI"

SECRET_KEYS = {"OPENAI_API_KEY", "N8N_JWT_TOKEN", "N8N_JWT_SECRET", "APP_PASSWORD"}


# -----------------------------
# Helpers
# -----------------------------
def _format_env_value(key: str, value: Optional[str]) -> str:
    if value is None:
        return "<unset>"
    if not isinstance(value, str):
        return str(value)
    if key in SECRET_KEYS:
        if value == "":
            return "<unset>"
        return f"****{value[-4:]}" if len(value) > 4 else "****"
    if value == "":
        return "<empty>"
    return value


def _resolve_instructions_path(path_value: str) -> pathlib.Path:
    path = pathlib.Path(path_value)
    if not path.is_absolute():
        path = (pathlib.Path(__file__).resolve().parent / path).resolve()
    return path


def load_system_instructions() -> Tuple[str, str, Optional[str]]:
    if not SYSTEM_INSTRUCTIONS_PATH:
        return DEFAULT_SYSTEM_INSTRUCTIONS, "default", None

    path = _resolve_instructions_path(SYSTEM_INSTRUCTIONS_PATH)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("System instructions file not found: %s. Using default.", path)
        return DEFAULT_SYSTEM_INSTRUCTIONS, "default", str(path)
    except OSError as exc:
        logger.warning(
            "Failed to read system instructions file %s: %s. Falling back to default.",
            path,
            exc,
        )
        return DEFAULT_SYSTEM_INSTRUCTIONS, "default", str(path)

    text = text.strip()
    if text == "":
        logger.warning("System instructions file %s is empty; using default.", path)
        return DEFAULT_SYSTEM_INSTRUCTIONS, "default", str(path)
    return text, "file", str(path)


def reload_system_instructions() -> None:
    global SYSTEM_INSTRUCTIONS, SYSTEM_INSTRUCTIONS_SOURCE, SYSTEM_INSTRUCTIONS_PATH_RESOLVED
    (
        SYSTEM_INSTRUCTIONS,
        SYSTEM_INSTRUCTIONS_SOURCE,
        SYSTEM_INSTRUCTIONS_PATH_RESOLVED,
    ) = load_system_instructions()


def log_env_config() -> None:
    values = {
        "CHAT_BACKEND": CHAT_BACKEND,
        "OPENAI_API_KEY": OPENAI_API_KEY,
        "OPENAI_PROMPT_ID": OPENAI_PROMPT_ID,
        "OPENAI_PROMPT_VERSION": OPENAI_PROMPT_VERSION,
        "OPENAI_MODEL": OPENAI_MODEL,
        "OPENAI_VECTOR_STORE_ID": VECTOR_STORE_ID,
        "SYSTEM_INSTRUCTIONS_PATH_RESOLVED": SYSTEM_INSTRUCTIONS_PATH_RESOLVED,
        "SYSTEM_INSTRUCTIONS_SOURCE": SYSTEM_INSTRUCTIONS_SOURCE,
        "N8N_WEBHOOK_URL": N8N_WEBHOOK_URL,
        "N8N_JWT_TOKEN": N8N_JWT_TOKEN,
        "N8N_JWT_SECRET": N8N_JWT_SECRET,
        "APP_PASSWORD": APP_PASSWORD,
        "AUTH_REQUIRED": AUTH_REQUIRED,
        "SESSION_TTL_SECONDS": SESSION_TTL_SECONDS,
        "UPSTREAM_TIMEOUT_SECONDS": UPSTREAM_TIMEOUT_SECONDS,
    }

    logger.info("dotenv loaded: %s", DOTENV_LOADED)
    logger.info("Environment configuration:")
    for key, value in values.items():
        logger.info("  %s=%s", key, _format_env_value(key, value))


# -----------------------------
# Errors
# -----------------------------
class ProxyError(HTTPException):
    """An upstream or validation failure rendered to the client as ``{"error": ...}``."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(status_code=status_code, detail=message)


def upstream_error_text(exc: APIStatusError) -> str:
    response = getattr(exc, "response", None)
    text = response.text if response is not None else ""
    return text or exc.message


def classify_openai_error(exc: APIStatusError) -> ProxyError:
    status = exc.status_code
    logger.error("OpenAI responses error %s: %s", status, upstream_error_text(exc))
    if status == 404:
        return ProxyError(
            404,
            "OpenAI resource not found. Please check your prompt ID and vector store configuration.",
        )
    if status == 401:
        return ProxyError(401, "Invalid OpenAI API key")
    return ProxyError(status, f"OpenAI API error ({status})")


def classify_webhook_error(status: int, body: str) -> ProxyError:
    logger.error("N8N response error %s: %s", status, body)
    if status == 404:
        return ProxyError(
            404,
            "Webhook URL not found. Please check your n8n workflow is active and the URL is correct.",
        )
    if status == 401 or "invalid signature" in body:
        return ProxyError(
            401,
            "JWT authentication failed. Please check your token matches the n8n secret.",
        )
    return ProxyError(status, f"N8N API error ({status})")


# -----------------------------
# Upstream clients
# -----------------------------
def openai_client() -> OpenAI:
    if not OPENAI_API_KEY:
        raise ProxyError(500, "OpenAI API key not configured")
    return OpenAI(api_key=OPENAI_API_KEY, timeout=UPSTREAM_TIMEOUT_SECONDS, max_retries=0)


def require_vector_store() -> str:
    if not VECTOR_STORE_ID:
        raise ProxyError(500, "Vector store ID not configured")
    return VECTOR_STORE_ID


def n8n_http_client() -> httpx.Client:
    return httpx.Client(timeout=UPSTREAM_TIMEOUT_SECONDS)


def n8n_bearer_token(session_id: str) -> Optional[str]:
    if N8N_JWT_TOKEN:
        return N8N_JWT_TOKEN
    if N8N_JWT_SECRET:
        issued = int(time.time())
        claims = {"sub": session_id, "iat": issued, "exp": issued + N8N_JWT_TTL_SECONDS}
        return jwt.encode(claims, N8N_JWT_SECRET, algorithm="HS256")
    return None


# -----------------------------
# Chat proxy
# -----------------------------
def _text_candidates(item: Any) -> Iterator[Any]:
    if not isinstance(item, dict):
        return
    content = item.get("content")
    if isinstance(content, str):
        yield content
    elif isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") in ("output_text", "text"):
                yield part.get("text")
    yield item.get("text")


def first_text(outputs: Optional[Iterable[Any]]) -> Optional[str]:
    """Return the first non-blank text block of a Responses API ``output`` list.

    Items are scanned in order; tool calls and reasoning entries have no text
    and are skipped. The winning text is returned trimmed, or ``None`` when no
    item carries any.
    """
    for item in outputs or []:
        for candidate in _text_candidates(item):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


def build_response_request(message: str, previous_response_id: Optional[str]) -> Dict[str, Any]:
    request: Dict[str, Any] = {"input": message}
    if OPENAI_PROMPT_ID:
        prompt = {"id": OPENAI_PROMPT_ID}
        if OPENAI_PROMPT_VERSION:
            prompt["version"] = OPENAI_PROMPT_VERSION
        request["prompt"] = prompt
    else:
        request["model"] = OPENAI_MODEL
        request["instructions"] = SYSTEM_INSTRUCTIONS
        if VECTOR_STORE_ID:
            request["tools"] = [{"type": "file_search", "vector_store_ids": [VECTOR_STORE_ID]}]
    if previous_response_id:
        request["previous_response_id"] = previous_response_id
    return request


def proxy_openai_chat(message: str, session_id: str, previous_response_id: Optional[str]) -> Dict[str, Any]:
    client = openai_client()
    try:
        resp = client.responses.create(**build_response_request(message, previous_response_id))
    except APIStatusError as exc:
        raise classify_openai_error(exc)
    except APIConnectionError as exc:
        logger.error("OpenAI request failed: %s", exc)
        raise ProxyError(500, "Failed to process request")
    except APIError as exc:
        logger.error("OpenAI returned an unusable response: %s", exc)
        raise ProxyError(500, "Failed to process request")

    payload = resp.model_dump()
    output = first_text(payload.get("output"))
    if not output:
        logger.error("OpenAI response %s carried no text output", payload.get("id"))
        raise ProxyError(500, "Failed to process request")

    return {
        "output": output,
        "sessionId": session_id,
        "responseId": payload.get("id"),
        "status": payload.get("status"),
    }


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def normalize_webhook_payload(data: Any, session_id: str) -> Dict[str, Any]:
    # n8n "respond to webhook" nodes often answer with a single-item list
    if isinstance(data, list):
        data = data[0] if data and isinstance(data[0], dict) else {}
    if isinstance(data, str):
        data = {"output": data}
    if not isinstance(data, dict):
        data = {}

    output = None
    for key in ("output", "response", "text"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            output = value
            break

    return {
        "output": output or NO_RESPONSE_TEXT,
        "sessionId": _optional_str(data.get("sessionId")) or session_id,
        "responseId": _optional_str(data.get("responseId")),
        "status": _optional_str(data.get("status")),
    }


def proxy_webhook_chat(message: str, session_id: str) -> Dict[str, Any]:
    if not N8N_WEBHOOK_URL:
        raise ProxyError(500, "N8N webhook URL not configured")

    headers = {"Content-Type": "application/json"}
    token = n8n_bearer_token(session_id)
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        with n8n_http_client() as client:
            resp = client.get(
                N8N_WEBHOOK_URL,
                params={"message": message, "sessionId": session_id},
                headers=headers,
            )
    except httpx.HTTPError as exc:
        logger.error("N8N request failed: %s", exc)
        raise ProxyError(500, "Failed to process request")

    if resp.status_code >= 400:
        raise classify_webhook_error(resp.status_code, resp.text)

    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        logger.info("N8N response (text): %s", resp.text)
        return {"output": resp.text.strip() or NO_RESPONSE_TEXT, "sessionId": session_id}
    try:
        data = resp.json()
    except ValueError as exc:
        logger.warning("Error parsing N8N response: %s", exc)
        return {"output": resp.text.strip() or NO_RESPONSE_TEXT, "sessionId": session_id}
    return normalize_webhook_payload(data, session_id)


def proxy_chat(message: Optional[str], session_id: Optional[str], previous_response_id: Optional[str]) -> Dict[str, Any]:
    msg = (message or "").strip()
    if not msg:
        raise ProxyError(400, "Message is required")
    session_id = session_id or str(uuid.uuid4())

    if CHAT_BACKEND == "n8n":
        return proxy_webhook_chat(msg, session_id)
    if CHAT_BACKEND == "openai":
        return proxy_openai_chat(msg, session_id, previous_response_id)
    raise ProxyError(500, f"Unknown chat backend: {CHAT_BACKEND}")


# -----------------------------
# Transcripts (vector store)
# -----------------------------
def describe_transcript(client: OpenAI, vs_file: Any) -> Dict[str, Any]:
    filename, size = "Unknown", 0
    try:
        details = client.files.retrieve(vs_file.id)
        filename = details.filename or "Unknown"
        size = details.bytes or 0
    except (APIStatusError, APIConnectionError) as exc:
        logger.warning("Error fetching file details for %s: %s", vs_file.id, exc)
    return {
        "id": vs_file.id,
        "filename": filename,
        "bytes": size,
        "status": vs_file.status,
        "created_at": vs_file.created_at,
    }


def list_transcript_page(limit: int, after: Optional[str]) -> Dict[str, Any]:
    client = openai_client()
    vector_store_id = require_vector_store()

    kwargs: Dict[str, Any] = {"vector_store_id": vector_store_id, "limit": limit}
    if after:
        kwargs["after"] = after
    try:
        page = client.vector_stores.files.list(**kwargs)
    except APIStatusError as exc:
        text = upstream_error_text(exc)
        logger.error("List files error: %s", text)
        raise ProxyError(exc.status_code, f"Failed to list files: {text}")
    except APIConnectionError as exc:
        logger.error("List files error: %s", exc)
        raise ProxyError(500, "Failed to list transcripts")

    members = list(page.data or [])
    with ThreadPoolExecutor(max_workers=DETAIL_LOOKUP_WORKERS) as pool:
        files = list(pool.map(lambda f: describe_transcript(client, f), members))

    return {
        "files": files,
        "has_more": bool(getattr(page, "has_more", False)),
        "last_id": members[-1].id if members else None,
    }


def delete_transcript(file_id: Optional[str]) -> Dict[str, Any]:
    client = openai_client()
    vector_store_id = require_vector_store()
    if not file_id:
        raise ProxyError(400, "File ID is required")

    try:
        client.vector_stores.files.delete(file_id=file_id, vector_store_id=vector_store_id)
    except APIStatusError as exc:
        text = upstream_error_text(exc)
        logger.error("Delete file error: %s", text)
        raise ProxyError(exc.status_code, f"Failed to delete file: {text}")
    except APIConnectionError as exc:
        logger.error("Delete error: %s", exc)
        raise ProxyError(500, "Failed to delete transcript")

    logger.info("Removed %s from vector store %s", file_id, vector_store_id)
    return {"success": True, "message": "File deleted successfully"}


def is_text_upload(filename: str, content_type: str) -> bool:
    return filename.lower().endswith(".txt") or "text" in content_type


def upload_transcript_file(filename: str, content_type: str, data: bytes) -> Dict[str, Any]:
    client = openai_client()
    vector_store_id = require_vector_store()

    try:
        uploaded = client.files.create(
            file=(filename, data, content_type or "text/plain"),
            purpose="assistants",
        )
    except APIStatusError as exc:
        text = upstream_error_text(exc)
        logger.error("File upload error: %s", text)
        raise ProxyError(exc.status_code, f"Failed to upload file: {text}")
    except APIConnectionError as exc:
        logger.error("Upload error: %s", exc)
        raise ProxyError(500, "Failed to upload transcript")

    file_id = uploaded.id
    logger.info("File uploaded successfully: %s", file_id)

    try:
        vs_file = client.vector_stores.files.create(vector_store_id=vector_store_id, file_id=file_id)
    except APIStatusError as exc:
        text = upstream_error_text(exc)
        logger.error("Vector store add error: %s", text)
        raise ProxyError(exc.status_code, f"Failed to add file to vector store: {text}")
    except APIConnectionError as exc:
        logger.error("Upload error: %s", exc)
        raise ProxyError(500, "Failed to upload transcript")

    vector_store_file = vs_file.model_dump()
    logger.info("File added to vector store: %s", json.dumps(vector_store_file, default=str))
    return {
        "success": True,
        "fileId": file_id,
        "fileName": filename,
        "vectorStoreFile": vector_store_file,
        "message": "Transcript uploaded successfully",
    }


# -----------------------------
# Access gate
# -----------------------------
@dataclass(frozen=True)
class AccessSession:
    token: str
    created_at: float

    def expired(self, now: float) -> bool:
        return now - self.created_at > SESSION_TTL_SECONDS


sessions: Dict[str, AccessSession] = {}


def sweep_sessions(now: float) -> None:
    for token in [t for t, s in sessions.items() if s.expired(now)]:
        del sessions[token]


def issue_session() -> AccessSession:
    now = time.time()
    sweep_sessions(now)
    session = AccessSession(token=secrets.token_urlsafe(32), created_at=now)
    sessions[session.token] = session
    return session


def require_session(request: Request) -> Optional[AccessSession]:
    """Resolve the caller's access session into ``request.state.session``.

    Returns ``None`` when no password is configured. Raises 401 for a
    missing, unknown or expired ``X-Session-Token``.
    """
    if not AUTH_REQUIRED:
        request.state.session = None
        return None
    token = request.headers.get("x-session-token", "")
    session = sessions.get(token) if token else None
    if session is not None and session.expired(time.time()):
        sessions.pop(token, None)
        session = None
    if session is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    request.state.session = session
    return session


# -----------------------------
# FastAPI app
# -----------------------------
app = FastAPI(title="Transcript Assistant (OpenAI Responses + n8n)")

# Every route on this router needs an access session when the gate is enabled
api = APIRouter(dependencies=[Depends(require_session)])


class ChatRequest(BaseModel):
    message: Optional[str] = None
    sessionId: Optional[str] = None
    previousResponseId: Optional[str] = None


class ChatResponse(BaseModel):
    output: str
    sessionId: str
    responseId: Optional[str] = None
    status: Optional[str] = None


class AuthRequest(BaseModel):
    password: str


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "body"))
        message = f"Invalid {field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


@app.on_event("startup")
def startup_event():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    reload_system_instructions()
    log_env_config()
    if CHAT_BACKEND not in ("openai", "n8n"):
        logger.error("Unknown CHAT_BACKEND %r; chat requests will fail.", CHAT_BACKEND)


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.post("/api/auth")
def auth(req: AuthRequest):
    if not AUTH_REQUIRED:
        return {"ok": True, "required": False}
    if req.password != APP_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid password")
    session = issue_session()
    return {"ok": True, "required": True, "token": session.token}


@app.delete("/api/auth")
def logout(request: Request):
    token = request.headers.get("x-session-token", "")
    sessions.pop(token, None)
    return {"ok": True}


@api.get("/api/status")
def status():
    return {
        "backend": CHAT_BACKEND,
        "auth_required": AUTH_REQUIRED,
        "openai_key_set": bool(OPENAI_API_KEY),
        "prompt_configured": bool(OPENAI_PROMPT_ID),
        "model": None if OPENAI_PROMPT_ID else OPENAI_MODEL,
        "vector_store_configured": bool(VECTOR_STORE_ID),
        "webhook_configured": bool(N8N_WEBHOOK_URL),
        "instructions_source": SYSTEM_INSTRUCTIONS_SOURCE,
    }


@api.get("/api/chat", response_model=ChatResponse)
def chat_get(
    message: Optional[str] = None,
    session_id: Optional[str] = Query(None, alias="sessionId"),
    previous_response_id: Optional[str] = Query(None, alias="previousResponseId"),
):
    return proxy_chat(message, session_id, previous_response_id)


@api.post("/api/chat", response_model=ChatResponse)
def chat_post(
    req: Optional[ChatRequest] = None,
    message: Optional[str] = None,
    session_id: Optional[str] = Query(None, alias="sessionId"),
    previous_response_id: Optional[str] = Query(None, alias="previousResponseId"),
):
    body = req or ChatRequest()
    return proxy_chat(
        message or body.message,
        session_id or body.sessionId,
        previous_response_id or body.previousResponseId,
    )


@api.get("/api/list-transcripts")
def list_transcripts(
    limit: int = Query(LIST_PAGE_LIMIT, ge=1, le=LIST_PAGE_LIMIT),
    after: Optional[str] = None,
):
    return list_transcript_page(limit, after)


@api.delete("/api/list-transcripts")
def remove_transcript(file_id: Optional[str] = Query(None, alias="fileId")):
    return delete_transcript(file_id)


@api.post("/api/upload-transcript")
def upload_transcript(file: Optional[UploadFile] = File(None)):
    if file is None or not file.filename:
        raise ProxyError(400, "No file provided")
    content_type = file.content_type or ""
    if not is_text_upload(file.filename, content_type):
        raise ProxyError(400, "Only text files are allowed")
    data = file.file.read()
    return upload_transcript_file(pathlib.Path(file.filename).name, content_type, data)


app.include_router(api)


# -----------------------------
# Browser UI
# -----------------------------
BASE_STYLE = """
    :root {
      --bg: #f7f5ef;
      --panel: #ffffff;
      --ink: #1a1a1a;
      --muted: #5d5d5d;
      --line: #1d1d1d;
      --accent: #0f766e;
      --danger: #b42318;
    }
    * { box-sizing: border-box; }
    body {
      font-family: "JetBrains Mono", "IBM Plex Mono", "Fira Mono", "Menlo", "Consolas", monospace;
      margin: 0;
      color: var(--ink);
      background: var(--bg);
    }
    header {
      padding: 16px 18px;
      background: var(--panel);
      border-bottom: 2px solid var(--line);
      display:flex;
      gap:12px;
      align-items:center;
      flex-wrap: wrap;
    }
    header b { font-size: 12px; letter-spacing: 0.12em; text-transform: uppercase; }
    .spacer { flex: 1; }
    #wrap { max-width: 980px; margin: 0 auto; padding: 16px; }
    button {
      padding: 10px 12px;
      border: 2px solid var(--line);
      background: #ffffff;
      color: var(--ink);
      cursor:pointer;
      text-transform: uppercase;
      letter-spacing: 0.1em;
      font-size: 11px;
    }
    button:hover { background: #f5f5f5; }
    button:disabled { opacity: 0.5; cursor: default; }
    a.nav { color: var(--accent); font-size: 12px; }
    .row { display:flex; gap: 10px; margin-top: 10px; align-items:center; }
    .muted { color: var(--muted); font-size:12px; }
    .banner { margin-top: 12px; padding: 10px 12px; border: 2px solid var(--danger); color: var(--danger); font-size: 12px; display: none; }
    .banner.ok { border-color: var(--accent); color: var(--accent); }
    .banner.active { display: block; }
    input[type="password"], input[type="text"], #input {
      flex: 1;
      padding: 10px 12px;
      border: 2px solid var(--line);
      background: #ffffff;
      color: var(--ink);
      outline: none;
    }
    #authMask {
      position: fixed;
      inset: 0;
      display: none;
      align-items: center;
      justify-content: center;
      padding: 24px;
      background: rgba(247, 245, 239, 0.96);
      z-index: 1000;
    }
    #authMask.active { display: flex; }
    #authPanel { width: min(420px, 92vw); border: 2px solid var(--line); background: var(--panel); padding: 16px; }
    #authError { margin-top: 8px; color: var(--danger); font-size: 12px; }
"""

AUTH_SCRIPT = """
  const AUTH_REQUIRED = __AUTH_REQUIRED__;
  const TOKEN_KEY = 'ai-assistant-session';

  function sessionToken() {
    return localStorage.getItem(TOKEN_KEY);
  }

  function showAuthMask(message) {
    document.getElementById('authMask').classList.add('active');
    document.getElementById('authError').textContent = message || '';
    document.getElementById('authInput').focus();
  }

  function hideAuthMask() {
    document.getElementById('authMask').classList.remove('active');
    document.getElementById('authError').textContent = '';
  }

  function ensureAuth() {
    if (!AUTH_REQUIRED || sessionToken()) return true;
    showAuthMask('');
    return false;
  }

  async function fetchWithAuth(url, options = {}) {
    const headers = Object.assign({}, options.headers || {});
    const token = sessionToken();
    if (token) headers['X-Session-Token'] = token;
    const r = await fetch(url, { ...options, headers });
    if (r.status === 401 && AUTH_REQUIRED) {
      localStorage.removeItem(TOKEN_KEY);
      showAuthMask('Session expired. Enter the password again.');
    }
    return r;
  }

  async function attemptAuth(onUnlocked) {
    const input = document.getElementById('authInput');
    const password = input.value;
    if (!password) {
      showAuthMask('Enter a password to continue.');
      return;
    }
    try {
      const r = await fetch('/api/auth', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ password })
      });
      if (!r.ok) {
        input.value = '';
        showAuthMask('Invalid password. Please try again.');
        return;
      }
      const j = await r.json();
      if (j.token) localStorage.setItem(TOKEN_KEY, j.token);
      input.value = '';
      hideAuthMask();
      onUnlocked();
    } catch (err) {
      showAuthMask('Unable to authenticate.');
    }
  }

  async function logout() {
    await fetchWithAuth('/api/auth', { method: 'DELETE' });
    localStorage.removeItem(TOKEN_KEY);
    if (AUTH_REQUIRED) showAuthMask('');
  }

  function wireAuth(onUnlocked) {
    document.getElementById('authBtn').addEventListener('click', () => attemptAuth(onUnlocked));
    document.getElementById('authInput').addEventListener('keydown', (e) => {
      if (e.key === 'Enter') attemptAuth(onUnlocked);
    });
    document.getElementById('logoutBtn').addEventListener('click', logout);
    if (ensureAuth()) onUnlocked();
  }
"""

AUTH_MASK = """
  <div id="authMask">
    <div id="authPanel">
      <b>AI Assistant</b>
      <div class="muted">Enter your access password to continue.</div>
      <div class="row">
        <input id="authInput" type="password" placeholder="Password" />
        <button id="authBtn">Unlock</button>
      </div>
      <div id="authError"></div>
    </div>
  </div>
"""


def render_page(body: str) -> str:
    return body.replace("__BASE_STYLE__", BASE_STYLE).replace("__AUTH_MASK__", AUTH_MASK).replace(
        "__AUTH_SCRIPT__", AUTH_SCRIPT.replace("__AUTH_REQUIRED__", "true" if AUTH_REQUIRED else "false")
    )


@app.get("/", response_class=HTMLResponse)
def root():
    html = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Personal AI Assistant</title>
  <style>
__BASE_STYLE__
    #chat {
      height: 70vh;
      overflow: auto;
      background: var(--panel);
      border: 2px solid var(--line);
      padding: 12px;
    }
    .msg { margin: 12px 0; display: flex; }
    .msg .bubble {
      padding: 10px 12px;
      max-width: 78%;
      white-space: pre-wrap;
      line-height: 1.35;
      border: 2px solid var(--line);
    }
    .user { justify-content: flex-end; }
    .user .bubble { background: #efefef; }
    .ai { justify-content: flex-start; }
    .ai .bubble { background: #ffffff; border-style: dashed; }
    .msg time { display:block; margin-top: 6px; font-size: 10px; color: var(--muted); }
    .thinking { color: var(--muted); font-size: 12px; }
    #bar { display:flex; gap: 10px; margin-top: 12px; }
  </style>
</head>
<body>
__AUTH_MASK__
  <header>
    <b>Personal AI Assistant</b>
    <span class="muted">Podcast &amp; business transcripts</span>
    <span class="spacer"></span>
    <span class="muted" id="sessionLabel">Initializing...</span>
    <a class="nav" href="/upload">Manage transcripts</a>
    <button id="logoutBtn">Logout</button>
  </header>

  <div id="wrap">
    <div id="chat"></div>
    <div class="banner" id="errorBanner">Something went wrong. Please try again.</div>
    <div id="bar">
      <input id="input" placeholder="Ask about your podcast guests, meetings or clients..." />
      <button id="send">Send</button>
    </div>
  </div>

<script>
__AUTH_SCRIPT__

  const WELCOME = "Hello! I'm your personal AI assistant. I can help with your podcast interviews, " +
    "business meetings, client details and anything else in your uploaded transcripts. What would you like to know?";
  const REQUEST_TIMEOUT_MS = 30000;

  const state = {
    turns: [],
    sessionId: crypto.randomUUID(),
    lastResponseId: null,
    isLoading: false,
    error: null,
  };

  function appendTurn(sender, content, responseId) {
    const turn = { id: crypto.randomUUID(), sender, content, timestamp: new Date(), responseId };
    state.turns.push(turn);
    const chat = document.getElementById('chat');
    const div = document.createElement('div');
    div.className = 'msg ' + sender;
    const bubble = document.createElement('div');
    bubble.className = 'bubble';
    bubble.textContent = content;
    const time = document.createElement('time');
    time.textContent = turn.timestamp.toLocaleTimeString([], { hour: '2-digit', minute: '2-digit' });
    bubble.appendChild(time);
    div.appendChild(bubble);
    chat.appendChild(div);
    chat.scrollTop = chat.scrollHeight;
  }

  function setLoading(loading) {
    state.isLoading = loading;
    document.getElementById('send').disabled = loading;
    document.getElementById('input').disabled = loading;
    const existing = document.getElementById('thinkingMsg');
    if (existing) existing.remove();
    if (loading) {
      const chat = document.getElementById('chat');
      const div = document.createElement('div');
      div.className = 'msg ai';
      div.id = 'thinkingMsg';
      const bubble = document.createElement('div');
      bubble.className = 'bubble thinking';
      bubble.textContent = 'Thinking...';
      div.appendChild(bubble);
      chat.appendChild(div);
      chat.scrollTop = chat.scrollHeight;
    }
  }

  function setError(message) {
    state.error = message;
    document.getElementById('errorBanner').classList.toggle('active', !!message);
  }

  function describeFailure(status) {
    if (status === 401) return 'Authentication failed. Please check your access credentials.';
    if (status === 403) return "Access forbidden. You don't have permission to use this service.";
    if (status === 404) return 'AI service is temporarily unavailable. Please try again later.';
    if (status >= 500) return 'AI service is experiencing issues. Please try again in a few moments.';
    return 'Failed to get response from AI. Please try again.';
  }

  async function requestReply(message, previousResponseId) {
    const params = new URLSearchParams({ message, sessionId: state.sessionId });
    if (previousResponseId) params.set('previousResponseId', previousResponseId);
    const controller = new AbortController();
    const timer = setTimeout(() => controller.abort(), REQUEST_TIMEOUT_MS);
    let r;
    try {
      r = await fetchWithAuth('/api/chat?' + params.toString(), { signal: controller.signal });
    } catch (err) {
      throw new Error('Unable to connect to AI service. Please check your internet connection and try again.');
    } finally {
      clearTimeout(timer);
    }
    if (!r.ok) throw new Error(describeFailure(r.status));
    let j;
    try {
      j = await r.json();
    } catch (err) {
      throw new Error('Failed to get response from AI. Please try again.');
    }
    return j;
  }

  async function send() {
    if (state.isLoading) return;
    const inp = document.getElementById('input');
    const text = inp.value.trim();
    if (!text) return;
    if (!ensureAuth()) return;
    inp.value = '';
    appendTurn('user', text);
    setError(null);
    setLoading(true);
    try {
      const j = await requestReply(text, state.lastResponseId);
      if (j.sessionId) {
        state.sessionId = j.sessionId;
        renderSession();
      }
      state.lastResponseId = j.responseId || null;
      setLoading(false);
      appendTurn('ai', j.output || "I'm sorry, I couldn't generate a response. Please try again.", j.responseId);
    } catch (err) {
      setLoading(false);
      appendTurn('ai', err.message || 'An unexpected error occurred. Please try again.');
      setError(err.message || 'Unknown error');
    } finally {
      document.getElementById('input').focus();
    }
  }

  function renderSession() {
    document.getElementById('sessionLabel').textContent = 'Session: ' + state.sessionId.slice(0, 8) + '...';
  }

  document.getElementById('send').addEventListener('click', send);
  document.getElementById('input').addEventListener('keydown', (e) => {
    if (e.key === 'Enter' && !e.shiftKey) {
      e.preventDefault();
      send();
    }
  });

  renderSession();
  appendTurn('ai', WELCOME);
  wireAuth(() => document.getElementById('input').focus());
</script>
</body>
</html>
        """
    return HTMLResponse(render_page(html))


@app.get("/upload", response_class=HTMLResponse)
def upload_page():
    html = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Transcripts</title>
  <style>
__BASE_STYLE__
    .panel { margin-top: 12px; border: 2px solid var(--line); background: var(--panel); padding: 10px; }
    .file-row { display:flex; gap: 10px; align-items:center; padding: 8px 4px; border-bottom: 1px dashed var(--line); font-size: 12px; }
    .file-row:last-child { border-bottom: none; }
    .file-name { flex: 1; word-break: break-all; }
    .file-meta { color: var(--muted); white-space: nowrap; }
    .file-status { border: 2px solid var(--line); padding: 2px 6px; font-size: 10px; text-transform: uppercase; }
  </style>
</head>
<body>
__AUTH_MASK__
  <header>
    <b>Transcripts</b>
    <span class="muted" id="summary"></span>
    <span class="spacer"></span>
    <a class="nav" href="/">Back to chat</a>
    <button id="logoutBtn">Logout</button>
  </header>

  <div id="wrap">
    <div class="panel">
      <div class="row">
        <input id="fileInput" type="file" accept=".txt,text/plain" />
        <button id="uploadBtn">Upload</button>
      </div>
      <div class="muted" id="progress"></div>
    </div>
    <div class="banner" id="errorBanner"></div>
    <div class="banner ok" id="successBanner"></div>
    <div class="panel">
      <div class="row">
        <b>Uploaded transcripts</b>
        <span class="spacer"></span>
        <button id="refreshBtn">Refresh</button>
      </div>
      <div id="fileList"></div>
      <div class="row"><button id="moreBtn" style="display:none">Load more</button></div>
    </div>
  </div>

<script>
__AUTH_SCRIPT__

  const PAGE_SIZE = 20;
  let files = [];
  let hasMore = false;
  let lastId = null;
  let loadingMore = false;
  let selectedFile = null;

  function notify(kind, message) {
    const error = document.getElementById('errorBanner');
    const success = document.getElementById('successBanner');
    error.classList.remove('active');
    success.classList.remove('active');
    if (!message) return;
    const el = kind === 'error' ? error : success;
    el.textContent = message;
    el.classList.add('active');
  }

  function formatBytes(bytes) {
    if (!bytes) return '0 Bytes';
    const k = 1024;
    const sizes = ['Bytes', 'KB', 'MB', 'GB'];
    const i = Math.floor(Math.log(bytes) / Math.log(k));
    return Math.round((bytes / Math.pow(k, i)) * 100) / 100 + ' ' + sizes[i];
  }

  function formatDate(timestamp) {
    return new Date(timestamp * 1000).toLocaleDateString('en-US', {
      year: 'numeric', month: 'short', day: 'numeric', hour: '2-digit', minute: '2-digit'
    });
  }

  function renderFiles() {
    const list = document.getElementById('fileList');
    list.innerHTML = '';
    if (!files.length) {
      const empty = document.createElement('div');
      empty.className = 'muted';
      empty.textContent = 'No transcripts uploaded yet.';
      list.appendChild(empty);
    }
    files.forEach((f) => {
      const row = document.createElement('div');
      row.className = 'file-row';
      const name = document.createElement('span');
      name.className = 'file-name';
      name.textContent = f.filename;
      const meta = document.createElement('span');
      meta.className = 'file-meta';
      meta.textContent = formatBytes(f.bytes) + ' | ' + formatDate(f.created_at);
      const status = document.createElement('span');
      status.className = 'file-status';
      status.textContent = f.status;
      const del = document.createElement('button');
      del.textContent = 'Delete';
      del.addEventListener('click', () => removeFile(f.id, f.filename));
      row.appendChild(name);
      row.appendChild(meta);
      row.appendChild(status);
      row.appendChild(del);
      list.appendChild(row);
    });
    document.getElementById('summary').textContent = files.length + ' loaded' + (hasMore ? ' (more available)' : '');
    document.getElementById('moreBtn').style.display = hasMore ? '' : 'none';
  }

  async function loadFiles(reset = true) {
    if (!ensureAuth()) return;
    if (!reset && (loadingMore || !hasMore)) return;
    if (reset) {
      files = [];
      lastId = null;
    } else {
      loadingMore = true;
    }
    try {
      const params = new URLSearchParams({ limit: String(PAGE_SIZE) });
      if (!reset && lastId) params.set('after', lastId);
      const r = await fetchWithAuth('/api/list-transcripts?' + params.toString());
      const j = await r.json();
      if (!r.ok) throw new Error(j.error || 'Failed to load transcripts');
      files = reset ? (j.files || []) : files.concat(j.files || []);
      hasMore = !!j.has_more;
      lastId = j.last_id || null;
      renderFiles();
    } catch (err) {
      notify('error', err.message || 'Failed to load files');
    } finally {
      loadingMore = false;
    }
  }

  async function uploadFile() {
    if (!ensureAuth()) return;
    if (!selectedFile) {
      notify('error', 'Please select a file first');
      return;
    }
    const btn = document.getElementById('uploadBtn');
    btn.disabled = true;
    notify(null, null);
    document.getElementById('progress').textContent = 'Uploading file...';
    try {
      const form = new FormData();
      form.append('file', selectedFile);
      const r = await fetchWithAuth('/api/upload-transcript', { method: 'POST', body: form });
      const j = await r.json();
      if (!r.ok) throw new Error(j.error || 'Upload failed');
      notify('ok', 'Successfully uploaded: ' + selectedFile.name);
      selectedFile = null;
      document.getElementById('fileInput').value = '';
      setTimeout(() => loadFiles(), 2000);
    } catch (err) {
      notify('error', err.message || 'Upload failed');
    } finally {
      btn.disabled = false;
      document.getElementById('progress').textContent = '';
    }
  }

  async function removeFile(fileId, filename) {
    if (!confirm('Are you sure you want to delete "' + filename + '"?')) return;
    try {
      const r = await fetchWithAuth('/api/list-transcripts?fileId=' + encodeURIComponent(fileId), { method: 'DELETE' });
      const j = await r.json();
      if (!r.ok) throw new Error(j.error || 'Failed to delete file');
      notify('ok', 'Deleted: ' + filename);
      loadFiles();
    } catch (err) {
      notify('error', err.message || 'Delete failed');
    }
  }

  document.getElementById('fileInput').addEventListener('change', (e) => {
    const file = e.target.files[0];
    if (!file) return;
    if (!file.name.endsWith('.txt')) {
      notify('error', 'Please select a .txt file');
      e.target.value = '';
      return;
    }
    selectedFile = file;
    notify(null, null);
  });
  document.getElementById('uploadBtn').addEventListener('click', uploadFile);
  document.getElementById('refreshBtn').addEventListener('click', () => loadFiles());
  document.getElementById('moreBtn').addEventListener('click', () => loadFiles(false));

  wireAuth(() => loadFiles());
</script>
</body>
</html>
        """
    return HTMLResponse(render_page(html))


# Entry point for: python app.py
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
