"""
References Module.

Sanitized agent-name references and their rewriting on rename.
"""

from .rewriter import ReferenceLocation, ReferenceRewriter, RewriteResult
from .sanitize import build_reference_pattern, sanitize_name

__all__ = [
    "ReferenceLocation",
    "ReferenceRewriter",
    "RewriteResult",
    "build_reference_pattern",
    "sanitize_name",
]
