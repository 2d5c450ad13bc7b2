"""
Exam Paper Extraction Pipeline.

Modules:
- structure_analyzer: page classification and booklet detection
- booklet_partitioner: page ranges and numbering per booklet
- question_extractor: per-booklet crop boundaries with validation + retry
- answer_extractor: answer key (text or image regions)
- run: ExamPipeline orchestrator
- reextract: single question / answer re-extraction
"""

from .errors import ExtractionError, PipelineCancelled, ReextractionError, StructureAnalysisError
from .models import BatchResult, Booklet, Page, Question, StructureResult
from .structure_analyzer import StructureAnalyzer
from .booklet_partitioner import BookletPlan, partition_booklets
from .question_extractor import BookletOutcome, QuestionExtractor, RetryPolicy
from .answer_extractor import AnswerExtractor, AnswerOutcome
from .report import DiagnosticReport, format_report
from .run import ExamPipeline

__all__ = [
    "ExtractionError",
    "PipelineCancelled",
    "ReextractionError",
    "StructureAnalysisError",
    "BatchResult",
    "Booklet",
    "Page",
    "Question",
    "StructureResult",
    "StructureAnalyzer",
    "BookletPlan",
    "partition_booklets",
    "BookletOutcome",
    "QuestionExtractor",
    "RetryPolicy",
    "AnswerExtractor",
    "AnswerOutcome",
    "DiagnosticReport",
    "format_report",
    "ExamPipeline",
]
