# InsightGen API Response Models
# ===============================
"""Pydantic models for API responses."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from core.templates.models import QueryTemplate, SimilarTemplate


# ============================================
# Base Response Models
# ============================================

class MetaInfo(BaseModel):
    """Response metadata."""
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
    request_id: Optional[str] = None
    path: Optional[str] = None


class ErrorDetail(BaseModel):
    """Error details."""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class APIResponse(BaseModel):
    """Standard API response wrapper."""
    success: bool = True
    data: Optional[Any] = None
    error: Optional[ErrorDetail] = None
    meta: MetaInfo = Field(default_factory=MetaInfo)


# ============================================
# Insights Responses
# ============================================

class CacheInvalidateResponse(BaseModel):
    """Result of a cache invalidation."""
    removed: int
    customer_id: Optional[str] = None
    schema_version: Optional[str] = None


# ============================================
# Ontology Responses
# ============================================

class SynonymResponse(BaseModel):
    """Ontology expansion of one term."""
    term: str
    customer_id: str
    synonyms: List[str]
    count: int


# ============================================
# Template Responses
# ============================================

class TemplateCreateResponse(BaseModel):
    """Created draft plus its near-duplicates in the catalog."""
    template: QueryTemplate
    similar: List[SimilarTemplate] = Field(default_factory=list)


class DuplicateCheckResponse(BaseModel):
    """Near-duplicates of a draft."""
    similar: List[SimilarTemplate] = Field(default_factory=list)
    count: int = 0


# ============================================
# Clarification Responses
# ============================================

class AuditBatchResponse(BaseModel):
    """Outcome of a clarification audit batch."""
    received: int
    logged: int
