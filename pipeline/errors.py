"""
Exceptions raised by the extraction pipeline.

Only fatal conditions raise. Per-booklet and answer-key problems are
reported as ValidationIssues / outcome errors instead.
"""

from typing import Sequence


class ExtractionError(Exception):
    """Base class for pipeline errors."""


class StructureAnalysisError(ExtractionError):
    """Structure analysis returned nothing usable; the whole document aborts."""

    def __init__(self, message: str, missing_fields: Sequence[str] = (), excerpt: str = ""):
        self.missing_fields = tuple(missing_fields)
        self.excerpt = excerpt
        details = message
        if self.missing_fields:
            details += f" (missing: {', '.join(self.missing_fields)})"
        if excerpt:
            details += f" | response: {excerpt}"
        super().__init__(details)


class PipelineCancelled(ExtractionError):
    """The caller cancelled the request."""


class ReextractionError(ExtractionError):
    """A single-question / single-answer re-extraction could not be parsed."""
