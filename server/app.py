"""FastAPI application -- routes for the KalExam study engine."""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import json as _json
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from rag.corpus import CorpusAccessor
from server.dependencies import get_corpus, get_settings, get_study_tools
from server.schemas import (
    AskRequest,
    ExamModeRequest,
    LearnItemRequest,
    MicroQuizRequest,
    StudyRequest,
    TopicRequest,
)
from server.services import study_service
from server.services.llm.router import ModelConfig
from server.services.study_service import StreamEvent, StudyTools

__version__ = "0.3.0"

logger = logging.getLogger("kalexam")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan: no heavy work. Corpus scopes and the provider are built lazily on first request."""
    ts = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Startup: begin (corpus loads lazily)", ts)
    yield
    ts_end = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Shutdown: complete", ts_end)


app = FastAPI(title="KalExam", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in get_settings().cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _model_selection(req: StudyRequest) -> ModelConfig:
    try:
        return req.model_selection()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _sse(events: AsyncIterator[StreamEvent]) -> StreamingResponse:
    async def gen():
        async for event in events:
            yield f"data: {_json.dumps(event.to_dict())}\n\n"

    return StreamingResponse(
        gen(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/version")
def version():
    return {"version": __version__}


# ---- Study ----

@app.post("/study/topic")
async def study_topic(
    req: TopicRequest,
    corpus: CorpusAccessor = Depends(get_corpus),
    tools: StudyTools = Depends(get_study_tools),
):
    """Structured study notes for one topic."""
    result = await study_service.build_topic_study_content(
        corpus,
        req.scope_id,
        req.topic,
        _model_selection(req),
        req.generation_context(),
        tools=tools,
        priority=req.priority,
        outline_only=req.outline_only,
    )
    return result.to_dict()


@app.post("/study/learn-item")
async def study_learn_item(
    req: LearnItemRequest,
    corpus: CorpusAccessor = Depends(get_corpus),
    tools: StudyTools = Depends(get_study_tools),
):
    """Deep explanation of one item to learn; SSE when stream=true."""
    model_config = _model_selection(req)
    if req.stream:
        return _sse(study_service.build_learn_item_content_stream(
            corpus, req.scope_id, req.topic, req.item, model_config, req.generation_context(), tools=tools,
        ))
    result = await study_service.build_learn_item_content(
        corpus, req.scope_id, req.topic, req.item, model_config, req.generation_context(), tools=tools,
    )
    return result.to_dict()


@app.post("/study/ask")
async def study_ask(
    req: AskRequest,
    corpus: CorpusAccessor = Depends(get_corpus),
    tools: StudyTools = Depends(get_study_tools),
):
    """Grounded answer to a free-form question; SSE when stream=true."""
    model_config = _model_selection(req)
    if req.stream:
        return _sse(study_service.answer_topic_question_stream(
            corpus,
            req.scope_id,
            req.topic,
            req.question,
            model_config,
            req.chat_history(),
            req.generation_context(),
            tools=tools,
        ))
    result = await study_service.answer_topic_question(
        corpus,
        req.scope_id,
        req.topic,
        req.question,
        model_config,
        req.chat_history(),
        req.generation_context(),
        tools=tools,
    )
    return result.to_dict()


@app.post("/study/exam-mode")
async def study_exam_mode(
    req: ExamModeRequest,
    corpus: CorpusAccessor = Depends(get_corpus),
    tools: StudyTools = Depends(get_study_tools),
):
    result = await study_service.build_exam_mode_content(
        corpus, req.scope_id, req.topic, _model_selection(req), req.generation_context(), tools=tools,
    )
    return result.to_dict()


@app.post("/study/micro-quiz")
async def study_micro_quiz(
    req: MicroQuizRequest,
    corpus: CorpusAccessor = Depends(get_corpus),
    tools: StudyTools = Depends(get_study_tools),
):
    result = await study_service.build_micro_quiz_content(
        corpus, req.scope_id, req.topic, _model_selection(req), req.count, req.generation_context(), tools=tools,
    )
    return result.to_dict()
