# InsightGen API Request Models
# ==============================
"""Pydantic models for API requests."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from core.audit.models import ClarificationAuditEvent
from core.templates.models import PlaceholderSpec, TemplateStatus


# ============================================
# Insights Requests
# ============================================

class AskRequest(BaseModel):
    """Natural-language question to resolve."""
    customer_id: str = Field(..., description="Customer whose data is queried")
    question: str = Field(..., description="Natural-language question")
    model_id: Optional[str] = Field(default=None, description="Generation model")
    clarifications: Optional[Dict[str, Any]] = Field(
        default=None, description="Answers to earlier clarification requests, keyed by placeholder id"
    )
    schema_version: Optional[str] = None
    prompt_version: Optional[str] = None


class CacheInvalidateRequest(BaseModel):
    """Drop cached results for a customer and/or schema version (all when both empty)."""
    customer_id: Optional[str] = None
    schema_version: Optional[str] = None


# ============================================
# Template Requests
# ============================================

class TemplateCreateRequest(BaseModel):
    """New template; always saved as Draft."""
    name: str = Field(..., min_length=1)
    intent: str = Field(..., min_length=1)
    sql_pattern: str = Field(..., min_length=1)
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    placeholders: List[PlaceholderSpec] = Field(default_factory=list)
    question_examples: List[str] = Field(default_factory=list)
    customer_id: Optional[str] = None


class DuplicateCheckRequest(BaseModel):
    """Draft metadata checked against the catalog."""
    name: str = ""
    intent: str = ""
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    exclude_id: Optional[str] = None


class TemplateStatusRequest(BaseModel):
    """Approval workflow transition."""
    status: TemplateStatus


# ============================================
# Clarification Requests
# ============================================

class ClarificationAuditBatchRequest(BaseModel):
    """Clarification events reported by the presentation layer."""
    events: List[ClarificationAuditEvent] = Field(default_factory=list)


class ClarificationSubmitRequest(BaseModel):
    """Answers for an open clarification session."""
    confirm: Optional[bool] = Field(
        default=None, description="Accept (true) or change (false) the inferred values, when asked"
    )
    selections: Dict[str, str] = Field(
        default_factory=dict, description="Offered option id per placeholder"
    )
    answers: Dict[str, str] = Field(
        default_factory=dict, description="Free-text answer per placeholder"
    )
