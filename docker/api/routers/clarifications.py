# InsightGen API - Clarifications Router
# =======================================
"""Clarification audit endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from core.audit import AuditService, ClarificationStatistics

from models.requests import ClarificationAuditBatchRequest
from models.responses import AuditBatchResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_audit(request: Request) -> AuditService:
    return request.app.state.clarification_audit


@router.post("/audit")
async def log_clarification_events(body: ClarificationAuditBatchRequest, request: Request) -> AuditBatchResponse:
    """
    Record clarification presentations and responses.

    Failures are logged and reported as logged=0; the call itself never fails.
    """
    logged = get_audit(request).log_batch(body.events)
    return AuditBatchResponse(received=len(body.events), logged=logged)


@router.get("/statistics")
async def clarification_statistics(
    request: Request,
    customer_id: Optional[str] = Query(None),
) -> ClarificationStatistics:
    """Acceptance / custom / abandonment counts per placeholder outcome."""
    return get_audit(request).get_clarification_statistics(customer_id)
