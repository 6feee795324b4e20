"""
Template Models
===============

Pydantic models for the query template catalog.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TemplateStatus(str, Enum):
    """Lifecycle status of a template."""
    DRAFT = "Draft"
    APPROVED = "Approved"
    DEPRECATED = "Deprecated"


class PlaceholderSemantic(str, Enum):
    """What kind of value a placeholder takes."""
    CLINICAL_TERM = "clinical_term"
    NUMBER = "number"
    TIME_WINDOW = "time_window"
    TEXT = "text"


class PlaceholderSpec(BaseModel):
    """A {name} slot in a template's SQL pattern."""
    name: str = Field(..., min_length=1)
    semantic: PlaceholderSemantic = PlaceholderSemantic.TEXT
    column: Optional[str] = None
    required: bool = True
    default: Optional[str] = None
    prompt: Optional[str] = None
    options: List[str] = Field(default_factory=list)


class QueryTemplate(BaseModel):
    """A pre-authored, parameterized SQL pattern."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    intent: str = Field(..., min_length=1)
    status: TemplateStatus = TemplateStatus.DRAFT
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    sql_pattern: str = ""
    placeholders: List[PlaceholderSpec] = Field(default_factory=list)
    question_examples: List[str] = Field(default_factory=list)
    customer_id: Optional[str] = None  # None = shared across customers
    usage_count: int = 0
    success_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Fraction of recorded uses that succeeded (0 when unused)."""
        return self.success_count / self.usage_count if self.usage_count else 0.0

    @property
    def summary(self) -> str:
        return self.description or self.name


class TemplateDraft(BaseModel):
    """Draft metadata checked for near-duplicates before creation."""
    name: Optional[str] = None
    intent: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class TemplateFilters(BaseModel):
    """Filters for listing templates."""
    status: Optional[TemplateStatus] = None
    intent: Optional[str] = None
    tag: Optional[str] = None
    search: Optional[str] = None
    customer_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class TemplatePage(BaseModel):
    """One page of a template listing."""
    items: List[QueryTemplate]
    total: int
    limit: int
    offset: int


class SimilarTemplate(BaseModel):
    """A near-duplicate found for a draft."""
    template_id: Optional[str]
    name: str
    similarity: float
    success_rate: float
    usage_count: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
