from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, DefaultDict, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

import quiz_store

from .aggregator import AggregatedContent, ContentAggregator
from .config_resolver import ConfigResolver
from .errors import QuizAIError
from .extraction import TextExtractor
from .logging_utils import configure_logging
from .orchestrator import (
    GenerationOrchestrator,
    GenerationRateLimited,
    GenerationSuccess,
    ProgressUpdate,
)
from .providers import QuizGenerationService
from .rate_limiter import RateLimiter, identity_for
from .schemas import Difficulty, IntakePreview
from .settings import settings
from .sources import IntakeSession, SourceFile
from .store import JsonFileStore

logger = logging.getLogger("quizai.api")

app = FastAPI(title="QuizAI API", version="0.1.0")

rate_limiter = RateLimiter(JsonFileStore(settings.state_dir))
QUIZ_DIR = quiz_store.DEFAULT_DIR

_SERVICE: Optional[QuizGenerationService] = None


@dataclass
class Composer:
    session: IntakeSession = field(default_factory=IntakeSession)
    resolver: ConfigResolver = field(default_factory=ConfigResolver)


COMPOSERS: DefaultDict[str, Composer] = defaultdict(Composer)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _ndjson(obj: Dict[str, Any]) -> bytes:
    return (json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8")


def _service() -> QuizGenerationService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = QuizGenerationService()
    return _SERVICE


def _aggregator() -> ContentAggregator:
    return ContentAggregator(TextExtractor(ocr_service=_service()))


def _orchestrator(owner: str) -> GenerationOrchestrator:
    # one anonymous ledger per owner (a browser or terminal), not one per process
    return GenerationOrchestrator(_service(), rate_limiter.for_owner(owner))


def _parse_bool(raw: str) -> Optional[bool]:
    s = (raw or "").strip().lower()
    if not s:
        return None
    return s in ("1", "true", "yes", "on")


def _preview(content: AggregatedContent) -> IntakePreview:
    files = [u.file_name for u in content.units]
    if content.is_image:
        return IntakePreview(
            kind="image",
            image_mime_type=content.payload.mime_type,
            looks_preformatted=False,
            title_suggestion=content.title_suggestion,
            files=files,
        )
    return IntakePreview(
        kind="text",
        text=content.payload,
        looks_preformatted=content.looks_preformatted,
        title_suggestion=content.title_suggestion,
        files=files,
    )


async def _select_source(
    session: IntakeSession,
    files: Optional[List[UploadFile]],
    text: str,
    prompt: str,
) -> bool:
    """Selects at most one source on the session; returns False when none was given."""
    uploads = [f for f in (files or []) if f is not None and (f.filename or "")]
    if uploads:
        picked: List[SourceFile] = []
        for f in uploads:
            data = await f.read()
            if len(data) > settings.max_upload_bytes:
                raise HTTPException(status_code=413, detail=f"File too large: {f.filename}")
            picked.append(SourceFile(name=f.filename or "upload", mime_type=f.content_type or "", data=data))
        session.select_files(picked)
        return True
    if (text or "").strip():
        session.select_text(text)
        return True
    if (prompt or "").strip():
        session.select_prompt(prompt)
        return True
    return False


def _apply_config(
    resolver: ConfigResolver,
    ai_mode: str = "",
    difficulty: str = "",
    num_questions: str = "",
    locale: str = "",
    custom_prompt: Optional[str] = None,
) -> None:
    """Applies the non-empty form fields in a fixed order: locale, mode, difficulty, count, prompt."""
    try:
        if locale:
            resolver.set_locale(locale)
        mode = _parse_bool(ai_mode)
        if mode is True:
            resolver.enter_ai_mode()
        elif mode is False:
            resolver.enter_manual_mode()
        if difficulty:
            resolver.set_difficulty(Difficulty(difficulty))
        if num_questions:
            resolver.set_num_questions(int(num_questions))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if custom_prompt is not None:
        resolver.set_custom_prompt(custom_prompt)


@app.on_event("startup")
async def _startup_logging() -> None:
    configure_logging("quizai.api")
    logger.info("api_started provider=%s anon_limit=%d", settings.provider, rate_limiter.limit)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/quota")
def quota(user_id: str = "", owner: str = "default"):
    identity = identity_for(user_id)
    remaining = rate_limiter.for_owner(owner).remaining(identity)
    return {"unlimited": remaining is None, "remaining": remaining, "limit": rate_limiter.limit}


@app.post("/config")
def update_config(
    owner: str = Form("default"),
    ai_mode: str = Form(""),
    difficulty: str = Form(""),
    num_questions: str = Form(""),
    locale: str = Form(""),
    custom_prompt: Optional[str] = Form(None),
):
    resolver = COMPOSERS[owner].resolver
    _apply_config(resolver, ai_mode, difficulty, num_questions, locale, custom_prompt)
    return {"ai_mode": resolver.ai_mode, "config": resolver.config.model_dump(mode="json")}


@app.post("/intake/preview")
async def intake_preview(
    owner: str = Form("default"),
    files: Optional[List[UploadFile]] = File(None),
    text: str = Form(""),
    prompt: str = Form(""),
):
    session = COMPOSERS[owner].session
    if not await _select_source(session, files, text, prompt):
        raise HTTPException(status_code=400, detail="Upload a file, paste text or enter a prompt.")
    try:
        content = await session.aggregate(_aggregator())
    except QuizAIError as e:
        logger.info("intake_rejected owner=%s error=%s", owner, e.message)
        return JSONResponse({"ok": False, "error": e.message}, status_code=400)
    if content is None:
        return JSONResponse({"ok": False, "error": "superseded"}, status_code=409)
    return {"ok": True, "preview": _preview(content).model_dump()}


@app.get("/quizzes")
def list_quizzes(owner: str = "default"):
    items = quiz_store.load_quizzes(owner, QUIZ_DIR)
    return {"items": [{"id": x["id"], "title": x.get("title", ""), "created_at": x.get("created_at", "")} for x in items]}


@app.get("/quizzes/{quiz_id}")
def get_quiz(quiz_id: str, owner: str = "default"):
    item = quiz_store.get_quiz(owner, quiz_id, QUIZ_DIR)
    if item is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return item


# -----------------------------------------------------------------------------
# Streaming generation endpoint (NDJSON)
# -----------------------------------------------------------------------------
@app.post("/quiz/generate")
async def generate_quiz(
    owner: str = Form("default"),
    user_id: str = Form(""),
    files: Optional[List[UploadFile]] = File(None),
    text: str = Form(""),
    prompt: str = Form(""),
    ai_mode: str = Form(""),
    difficulty: str = Form(""),
    num_questions: str = Form(""),
    locale: str = Form(""),
    custom_prompt: Optional[str] = Form(None),
    save: str = Form("true"),
):
    composer = COMPOSERS[owner]
    session = composer.session
    _apply_config(composer.resolver, ai_mode, difficulty, num_questions, locale, custom_prompt)
    has_new_source = await _select_source(session, files, text, prompt)
    if not has_new_source and session.content is None:
        raise HTTPException(status_code=400, detail="Upload a file, paste text or enter a prompt.")

    identity = identity_for(user_id)
    config = composer.resolver.final_config()

    async def gen() -> AsyncGenerator[bytes, None]:
        yield _ndjson({"type": "start", "ts": _now()})

        if has_new_source:
            yield _ndjson({"type": "status", "text": "Reading your content..."})
            try:
                content = await session.aggregate(_aggregator())
            except QuizAIError as e:
                yield _ndjson({"type": "error", "message": e.message})
                yield _ndjson({"type": "done", "ts": _now()})
                return
            if content is None:
                yield _ndjson({"type": "error", "message": "superseded"})
                yield _ndjson({"type": "done", "ts": _now()})
                return
            yield _ndjson({"type": "intake", "preview": _preview(content).model_dump()})

        queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

        def on_progress(u: ProgressUpdate) -> None:
            queue.put_nowait(
                {
                    "type": "progress",
                    "state": u.state.value,
                    "attempt": u.attempt,
                    "max_attempts": u.max_attempts,
                    "percent": u.percent,
                    "status": u.status,
                }
            )

        task = asyncio.create_task(session.generate(_orchestrator(owner), config, identity, on_progress=on_progress))
        task.add_done_callback(lambda _t: queue.put_nowait(None))
        while True:
            event = await queue.get()
            if event is None:
                break
            yield _ndjson(event)

        try:
            outcome = task.result()
        except Exception as e:
            logger.exception("generation_crashed owner=%s", owner)
            yield _ndjson({"type": "error", "message": f"Generation failed: {e}"})
            yield _ndjson({"type": "done", "ts": _now()})
            return

        if outcome is None:
            yield _ndjson({"type": "error", "message": "superseded"})
        elif isinstance(outcome, GenerationSuccess):
            title = session.content.title_suggestion if session.content else ""
            result: Dict[str, Any] = {
                "type": "result",
                "quiz": outcome.quiz.model_dump(),
                "config": outcome.final_config.model_dump(mode="json"),
                "title_suggestion": title,
            }
            if _parse_bool(save) is not False:
                item = quiz_store.add_quiz(owner, outcome.quiz, outcome.final_config, _now(), base_dir=QUIZ_DIR)
                result["quiz_id"] = item["id"]
            yield _ndjson(result)
        elif isinstance(outcome, GenerationRateLimited):
            yield _ndjson({"type": "error", "error": "rate_limited", "limit": outcome.limit, "message": outcome.message})
        else:
            yield _ndjson({"type": "error", "message": outcome.message})

        yield _ndjson({"type": "done", "ts": _now()})

    return StreamingResponse(gen(), media_type="application/x-ndjson")
