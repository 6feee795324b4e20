# InsightGen API - Ontology Router
# =================================
"""Clinical ontology lookup endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.ontology import OntologyLookup, SynonymLookupOptions

from models.responses import SynonymResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ontology(request: Request) -> OntologyLookup:
    return request.app.state.ontology


@router.get("/synonyms")
async def lookup_synonyms(
    request: Request,
    term: str = Query(..., description="Term, synonym or abbreviation"),
    customer_id: str = Query(..., description="Customer scope"),
    max_levels: int = Query(1, ge=1, le=5),
    preferred_region: Optional[str] = Query(None),
    include_deprecated: bool = Query(False),
    include_informal: bool = Query(True),
    max_results: int = Query(20, ge=1, le=200),
) -> SynonymResponse:
    """Expand a term to its preferred term and synonyms."""
    if not term.strip():
        raise HTTPException(status_code=400, detail="term must not be empty")

    options = SynonymLookupOptions(
        max_levels=max_levels,
        preferred_region=preferred_region,
        include_deprecated=include_deprecated,
        include_informal=include_informal,
        max_results=max_results,
    )
    synonyms = get_ontology(request).lookup_synonyms(term, customer_id, options)
    return SynonymResponse(term=term, customer_id=customer_id, synonyms=synonyms, count=len(synonyms))


@router.get("/cache/stats")
async def ontology_cache_stats(request: Request):
    """Ontology lookup cache statistics."""
    return get_ontology(request).stats()
