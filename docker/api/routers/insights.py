# InsightGen API - Insights Router
# =================================
"""Question resolution, clarification session and session cache endpoints."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from core.engine.cache import BoundedTTLCache
from core.engine.clarification import (
    ClarificationEngine,
    ClarificationIncompleteError,
    ClarificationSession,
    ClarificationState,
)
from core.engine.models import DirectResult, ErrorResult, FunnelResult, OrchestrationResult, TemplateResult
from core.engine.orchestrator import QueryOrchestrator

from models.requests import AskRequest, CacheInvalidateRequest, ClarificationSubmitRequest
from models.responses import CacheInvalidateResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> QueryOrchestrator:
    """Orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


def get_clarification_engine(request: Request) -> ClarificationEngine:
    return request.app.state.clarification_engine


def get_sessions(request: Request) -> BoundedTTLCache:
    return request.app.state.clarification_sessions


def result_payload(result: OrchestrationResult) -> Dict[str, Any]:
    """Serialize a resolution result as a mode-discriminated payload."""
    if isinstance(result, TemplateResult):
        return result.to_dict()
    if isinstance(result, DirectResult):
        return result.to_dict()
    if isinstance(result, FunnelResult):
        return result.to_dict()
    if isinstance(result, ErrorResult):
        return result.to_dict()
    raise TypeError(f"Unhandled result type: {type(result).__name__}")


def respond(request: Request, result: OrchestrationResult, customer_id: str,
            model_id=None, clarifications=None, schema_version=None, prompt_version=None) -> Dict[str, Any]:
    """Payload for a result; funnels open a clarification session first."""
    payload = result_payload(result)
    if isinstance(result, FunnelResult):
        session = get_clarification_engine(request).start(
            result, customer_id.strip(), model_id=model_id, prior_clarifications=clarifications,
            schema_version=schema_version, prompt_version=prompt_version,
        )
        get_sessions(request).set(session.id, session)
        payload['session_id'] = session.id
        payload['state'] = session.state.value
    return payload


def get_session(request: Request, session_id: str) -> ClarificationSession:
    session = get_sessions(request).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Clarification session not found: {session_id}")
    return session


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/ask")
async def ask(body: AskRequest, request: Request) -> Dict[str, Any]:
    """
    Resolve a question.

    Returns a payload whose `mode` is one of template, direct, funnel or
    error. Funnel payloads carry a `session_id` to answer through
    `/sessions/{session_id}/submit`. Resolution failures come back as `error`
    payloads with status 200; an empty question, customer id or
    clarification answer is rejected (400).
    """
    orchestrator = get_orchestrator(request)
    result = await run_in_threadpool(
        orchestrator.resolve,
        body.question,
        body.customer_id,
        model_id=body.model_id,
        clarifications=body.clarifications,
        schema_version=body.schema_version,
        prompt_version=body.prompt_version,
    )
    return respond(request, result, body.customer_id, model_id=body.model_id,
                   clarifications=body.clarifications, schema_version=body.schema_version,
                   prompt_version=body.prompt_version)


@router.get("/sessions/{session_id}")
async def get_clarification_session(session_id: str, request: Request) -> Dict[str, Any]:
    """State, items and current answers of an open clarification session."""
    return get_session(request, session_id).to_dict()


@router.post("/sessions/{session_id}/submit")
async def submit_clarifications(session_id: str, body: ClarificationSubmitRequest,
                                request: Request) -> Dict[str, Any]:
    """
    Answer an open clarification session and resume resolution.

    Answers are validated (required items, offered options, free-text
    bounds) before resolution re-enters; an incomplete session stays open
    and the errors come back with status 400.
    """
    session = get_session(request, session_id)
    engine = get_clarification_engine(request)

    try:
        if session.state == ClarificationState.CONFIRMATION and body.confirm is not None:
            if body.confirm:
                session.accept_confirmations()
            else:
                session.request_changes()
        for placeholder_id, option_id in body.selections.items():
            session.select_option(placeholder_id, option_id)
        for placeholder_id, value in body.answers.items():
            session.answer(placeholder_id, value)
        submission = engine.submit(session)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e.args[0]) if e.args else str(e))
    except ClarificationIncompleteError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})

    get_sessions(request).delete(session_id)
    result = await run_in_threadpool(get_orchestrator(request).continue_with_answers, submission)
    return respond(request, result, submission.customer_id, model_id=submission.model_id,
                   clarifications=submission.answers, schema_version=submission.schema_version,
                   prompt_version=submission.prompt_version)


@router.get("/cache/stats")
async def cache_stats(request: Request) -> Dict[str, Any]:
    """Session result cache statistics."""
    return get_orchestrator(request).cache.stats()


@router.post("/cache/invalidate")
async def invalidate_cache(body: CacheInvalidateRequest, request: Request) -> CacheInvalidateResponse:
    """Drop cached results after data or schema changes."""
    removed = get_orchestrator(request).cache.invalidate(
        customer_id=body.customer_id, schema_version=body.schema_version
    )
    return CacheInvalidateResponse(removed=removed, customer_id=body.customer_id,
                                   schema_version=body.schema_version)
