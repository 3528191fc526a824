"""Utility modules."""

from .audit_logger import AuditLogger
from .text_matching import extract_supplier_name, name_similarity, tokenize

__all__ = ["AuditLogger", "extract_supplier_name", "name_similarity", "tokenize"]
