# InsightGen API - Templates Router
# ==================================
"""Query template catalog endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.templates import (
    QueryTemplate,
    TemplateCatalogService,
    TemplateDraft,
    TemplateFilters,
    TemplatePage,
    TemplateStatus,
)

from models.requests import DuplicateCheckRequest, TemplateCreateRequest, TemplateStatusRequest
from models.responses import DuplicateCheckResponse, TemplateCreateResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_catalog(request: Request) -> TemplateCatalogService:
    return request.app.state.templates


@router.get("")
async def list_templates(
    request: Request,
    status: Optional[TemplateStatus] = Query(None),
    intent: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Free-text search over name, description and keywords"),
    customer_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> TemplatePage:
    """List templates, filtered and paginated."""
    filters = TemplateFilters(status=status, intent=intent, tag=tag, search=search,
                              customer_id=customer_id, limit=limit, offset=offset)
    return get_catalog(request).list_templates(filters)


@router.post("", status_code=201)
async def create_template(body: TemplateCreateRequest, request: Request) -> TemplateCreateResponse:
    """Create a Draft template and report near-duplicates already in the catalog."""
    template = QueryTemplate(**body.model_dump())
    saved, similar = get_catalog(request).create_template(template)
    return TemplateCreateResponse(template=saved, similar=similar)


@router.post("/check-duplicates")
async def check_duplicates(body: DuplicateCheckRequest, request: Request) -> DuplicateCheckResponse:
    """Near-duplicate check for a draft before it is saved."""
    draft = TemplateDraft(**body.model_dump(exclude={'exclude_id'}))
    similar = get_catalog(request).check_duplicates(draft, exclude_id=body.exclude_id)
    return DuplicateCheckResponse(similar=similar, count=len(similar))


@router.get("/{template_id}")
async def get_template(template_id: str, request: Request) -> QueryTemplate:
    template = get_catalog(request).get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
    return template


@router.patch("/{template_id}/status")
async def update_status(template_id: str, body: TemplateStatusRequest, request: Request) -> QueryTemplate:
    """Move a template through Draft / Approved / Deprecated."""
    template = get_catalog(request).set_status(template_id, body.status)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
    return template
