"""
Template Catalog Service
========================

High-level access to the query template catalog: listing, approval
workflow, usage tracking and near-duplicate checks on new drafts.
"""

import logging
from typing import List, Optional, Tuple

from .database import TemplateDB
from .models import (
    QueryTemplate,
    SimilarTemplate,
    TemplateDraft,
    TemplateFilters,
    TemplatePage,
    TemplateStatus,
)

logger = logging.getLogger(__name__)

# Upper bound on templates pulled for matching / duplicate checks
CATALOG_SCAN_LIMIT = 500


class TemplateCatalogService:
    """
    Template store used by the orchestrator and the templates API.

    Usage:
        catalog = TemplateCatalogService(TemplateDB("data/templates.db"))
        approved = catalog.get_approved_templates("C1")
        created, similar = catalog.create_template(template)
    """

    def __init__(self, db: Optional[TemplateDB] = None, similarity_threshold: float = 0.7):
        self._db = db or TemplateDB()
        self.similarity_threshold = similarity_threshold

    def list_templates(self, filters: Optional[TemplateFilters] = None) -> TemplatePage:
        filters = filters or TemplateFilters()
        items, total = self._db.list(filters)
        return TemplatePage(items=items, total=total, limit=filters.limit, offset=filters.offset)

    def get_template(self, template_id: str) -> Optional[QueryTemplate]:
        return self._db.get(template_id)

    def get_approved_templates(self, customer_id: Optional[str] = None) -> List[QueryTemplate]:
        """Approved templates visible to a customer (shared plus their own)."""
        return self._scan(TemplateFilters(status=TemplateStatus.APPROVED, customer_id=customer_id))

    def check_duplicates(self, draft: TemplateDraft, exclude_id: Optional[str] = None) -> List[SimilarTemplate]:
        """Near-duplicates of a draft among templates with the same intent."""
        from core.engine.template_similarity import find_similar

        if not draft.name or not draft.intent:
            return []
        candidates = self._scan(TemplateFilters(intent=draft.intent))
        return find_similar(draft, candidates, threshold=self.similarity_threshold, exclude_id=exclude_id)

    def create_template(self, template: QueryTemplate) -> Tuple[QueryTemplate, List[SimilarTemplate]]:
        """
        Save a new template as a Draft.

        Returns:
            (saved template, similar existing templates)
        """
        draft = TemplateDraft(
            name=template.name,
            intent=template.intent,
            description=template.description,
            keywords=template.keywords,
            tags=template.tags,
        )
        similar = self.check_duplicates(draft)
        saved = self._db.save(template.model_copy(update={'status': TemplateStatus.DRAFT, 'id': None}))
        logger.info(f"Created draft template '{saved.name}' ({saved.id}), {len(similar)} similar")
        return saved, similar

    def save_template(self, template: QueryTemplate) -> QueryTemplate:
        """Insert or update a template as-is (used for imports and seeding)."""
        return self._db.save(template)

    def set_status(self, template_id: str, status: TemplateStatus) -> Optional[QueryTemplate]:
        if not self._db.update_status(template_id, status):
            return None
        logger.info(f"Template {template_id} -> {TemplateStatus(status).value}")
        return self._db.get(template_id)

    def approve(self, template_id: str) -> Optional[QueryTemplate]:
        return self.set_status(template_id, TemplateStatus.APPROVED)

    def deprecate(self, template_id: str) -> Optional[QueryTemplate]:
        return self.set_status(template_id, TemplateStatus.DEPRECATED)

    def record_usage(self, template_id: str, success: bool) -> None:
        self._db.record_usage(template_id, success)

    def _scan(self, filters: TemplateFilters) -> List[QueryTemplate]:
        templates: List[QueryTemplate] = []
        offset = 0
        while True:
            page, total = self._db.list(filters.model_copy(update={'limit': CATALOG_SCAN_LIMIT, 'offset': offset}))
            templates.extend(page)
            offset += len(page)
            if not page or offset >= total:
                return templates
