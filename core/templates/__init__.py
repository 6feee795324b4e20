# InsightGen Templates Package
"""
Query Template Catalog
======================
Pre-authored, parameterized SQL patterns with an approval workflow.
"""

from .models import (
    TemplateStatus,
    PlaceholderSemantic,
    PlaceholderSpec,
    QueryTemplate,
    TemplateDraft,
    TemplateFilters,
    TemplatePage,
    SimilarTemplate,
)
from .database import TemplateDB
from .service import TemplateCatalogService

__all__ = [
    'TemplateStatus',
    'PlaceholderSemantic',
    'PlaceholderSpec',
    'QueryTemplate',
    'TemplateDraft',
    'TemplateFilters',
    'TemplatePage',
    'SimilarTemplate',
    'TemplateDB',
    'TemplateCatalogService',
]
