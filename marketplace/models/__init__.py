"""
SQLAlchemy Models for the Template Marketplace
"""

from marketplace.models.template import Template, TemplateStatus
from marketplace.models.relationship import ForkRecord, ForkCounterReceipt, Favorite
from marketplace.models.usage import UsageEvent, UsageAction
from marketplace.models.search import SearchDocument, TemplateTag

__all__ = [
    "Favorite",
    "ForkCounterReceipt",
    "ForkRecord",
    "SearchDocument",
    "Template",
    "TemplateStatus",
    "TemplateTag",
    "UsageAction",
    "UsageEvent",
]
