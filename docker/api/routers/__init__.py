# InsightGen API Routers
# =======================
"""API route handlers for InsightGen."""

from . import insights
from . import ontology
from . import templates
from . import clarifications

__all__ = [
    'clarifications',
    'insights',
    'ontology',
    'templates',
]
