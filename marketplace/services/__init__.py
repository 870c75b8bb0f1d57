"""
Services Package - Template Relationship & Lifecycle Engine
"""

from marketplace.services.analytics import UsageRecorder
from marketplace.services.events import TemplateEvent, TemplateEventChannel, TemplateEventKind
from marketplace.services.ledger import RelationshipLedger, run_with_retry
from marketplace.services.lifecycle import TemplateLifecycleManager, TemplatePage, can_read
from marketplace.services.search import (
    SearchIndex,
    SearchIndexer,
    SearchQueryFacade,
    SqlSearchIndex,
)

__all__ = [
    "UsageRecorder",
    "TemplateEvent",
    "TemplateEventChannel",
    "TemplateEventKind",
    "RelationshipLedger",
    "run_with_retry",
    "TemplateLifecycleManager",
    "TemplatePage",
    "can_read",
    "SearchIndex",
    "SearchIndexer",
    "SearchQueryFacade",
    "SqlSearchIndex",
]
