"""
Main pipeline runner: one rendered exam document in, one BatchResult out.

Stages:
1. Structure analysis (fatal on failure)
2. Booklet partitioning
3. Per-booklet question extraction and answer extraction, concurrently
4. Merge into one entry per page, plus the diagnostic report
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence

from config import MAX_WORKERS
from pipeline.answer_extractor import AnswerExtractor, AnswerOutcome
from pipeline.booklet_partitioner import BookletPlan, answer_page_indices, partition_booklets
from pipeline.errors import PipelineCancelled
from pipeline.models import BatchResult, PageKind, PageResult, StructureResult
from pipeline.question_extractor import BookletOutcome, QuestionExtractor, RetryPolicy, failed_outcome
from pipeline.report import DiagnosticReport
from pipeline.structure_analyzer import StructureAnalyzer
from utils.oracle import CancelToken, Oracle, OracleCancelled, PageImage

logger = logging.getLogger(__name__)


def merge_pages(structure: StructureResult, outcomes: Sequence[BookletOutcome]) -> List[PageResult]:
    """
    Build exactly one PageResult per document page, ascending by index.

    Questions are only taken from pages that belong to the booklet that
    reported them.
    """
    questions_by_page: Dict[int, tuple] = {}
    for outcome in outcomes:
        allowed = set(outcome.plan.page_indices)
        for page_index, questions in outcome.pages.items():
            if page_index not in allowed:
                logger.warning(
                    "[WARN] %s returned page %d outside its pages %s, ignored",
                    outcome.label, page_index, sorted(allowed),
                )
                continue
            if page_index in questions_by_page:
                logger.warning("[WARN] Page %d reported by two booklets, keeping the first", page_index)
                continue
            questions_by_page[page_index] = questions

    pages = []
    for page in structure.pages:
        if page.kind == PageKind.QUESTION:
            questions = questions_by_page.get(page.index, ())
        else:
            questions = ()
        pages.append(PageResult(
            index=page.index,
            is_answer_sheet=page.kind == PageKind.ANSWER,
            is_cover_page=page.kind == PageKind.COVER,
            questions=questions,
        ))
    return sorted(pages, key=lambda p: p.index)


class ExamPipeline:
    """Main extraction pipeline."""

    def __init__(
        self,
        oracle: Oracle,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = MAX_WORKERS,
    ):
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max(1, max_workers)

    def _extract_booklet(self, extractor: QuestionExtractor, plan: BookletPlan, images, cancel) -> BookletOutcome:
        try:
            return extractor.extract(plan, images, cancel=cancel)
        except Exception as e:
            logger.exception("[ERROR] %s: question extraction crashed", plan.label)
            return failed_outcome(plan, f"{type(e).__name__}: {e}")

    def _extract_answers(self, extractor: AnswerExtractor, pages: Sequence[int], images, cancel) -> AnswerOutcome:
        try:
            return extractor.extract(pages, images, cancel=cancel)
        except Exception as e:
            logger.exception("[ERROR] Answer extraction crashed")
            return AnswerOutcome(error=f"{type(e).__name__}: {e}")

    def analyze(self, images: Sequence[PageImage], cancel: Optional[CancelToken] = None) -> BatchResult:
        """
        Analyze one document.

        Args:
            images: rendered pages, in document order
            cancel: optional token; when set, in-flight work finishes and
                PipelineCancelled is raised

        Returns:
            BatchResult with one page entry per input image and its report

        Raises:
            StructureAnalysisError: structure analysis failed
            PipelineCancelled: the cancel token was set
        """
        images = list(images)
        try:
            structure = StructureAnalyzer(self.oracle).analyze(images, cancel=cancel)
        except OracleCancelled as e:
            raise PipelineCancelled(str(e)) from e

        plans = partition_booklets(structure)
        answer_pages = answer_page_indices(structure)
        for plan in plans:
            logger.info(
                "%s: pages %s, questions from %s%d",
                plan.label, list(plan.page_indices), plan.booklet.question_prefix, plan.first_question_num,
            )

        question_extractor = QuestionExtractor(self.oracle, structure, policy=self.retry_policy)
        answer_extractor = AnswerExtractor(self.oracle, structure)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            booklet_futures = [
                executor.submit(self._extract_booklet, question_extractor, plan, images, cancel)
                for plan in plans
            ]
            answer_future = None
            if answer_pages:
                answer_future = executor.submit(
                    self._extract_answers, answer_extractor, answer_pages, images, cancel
                )
            pending = booklet_futures + ([answer_future] if answer_future else [])
            wait(pending)

        outcomes = [f.result() for f in booklet_futures]
        answer_outcome = answer_future.result() if answer_future else AnswerOutcome()

        if cancel is not None and cancel.cancelled:
            raise PipelineCancelled("Analysis cancelled by caller")

        result = BatchResult(
            header=structure.header,
            pages=tuple(merge_pages(structure, outcomes)),
            answers=dict(answer_outcome.answers),
            report=DiagnosticReport.build(outcomes, answer_outcome),
        )
        logger.info(
            "Done: %d pages, %d questions, %d answers, %d issue(s)",
            len(result.pages), len(result.questions), len(result.answers), len(result.report.issues),
        )
        return result
