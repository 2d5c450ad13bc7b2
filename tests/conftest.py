import io
import json
import threading
from typing import Callable, Dict, List, Optional, Sequence

import pytest
from PIL import Image

from utils.oracle import OracleError, PageImage


STRUCTURE_MARKER = "understand the STRUCTURE"
ANSWER_MARKER = "answer key / answer sheet pages"
BOOKLET_MARKER = "- Booklet: "


def make_page_image(width: int = 100, height: int = 140, color: str = "white") -> PageImage:
    image = Image.new("RGB", (width, height), color=color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return PageImage(data=buffer.getvalue(), mime_type="image/png")


def structure_json(pages: List[Dict], booklets: List[Dict], header: Optional[Dict] = None) -> str:
    return json.dumps({"header": header or {"title": "Test Exam"}, "pages": pages, "booklets": booklets})


def question_pages_json(pages: Dict[int, List[tuple]]) -> str:
    """{page_index: [(num, start, end), ...]} -> question extraction response."""
    return json.dumps({
        "pages": [
            {
                "pageIndex": idx,
                "questions": [
                    {"questionNum": num, "yStartPct": start, "yEndPct": end}
                    for num, start, end in questions
                ],
            }
            for idx, questions in pages.items()
        ]
    })


class Call:
    def __init__(self, labels, instruction, history):
        self.labels = labels
        self.instruction = instruction
        self.history = list(history)

    @property
    def kind(self) -> str:
        if STRUCTURE_MARKER in self.instruction:
            return "structure"
        if ANSWER_MARKER in self.instruction:
            return "answers"
        if BOOKLET_MARKER in self.instruction:
            return "booklet"
        return "other"

    @property
    def booklet(self) -> Optional[str]:
        for line in self.instruction.splitlines():
            if line.startswith(BOOKLET_MARKER):
                return line[len(BOOKLET_MARKER):].strip()
        return None


class ScriptedOracle:
    """
    Oracle stub answering from a script.

    script maps "structure", "answers" or a booklet label to a list of
    responses (one per attempt). A response is a string, an exception to
    raise, or a callable taking the Call.
    """

    def __init__(self, script: Dict[str, Sequence], fallback: Optional[Callable[[Call], str]] = None):
        self.script = {key: list(value) for key, value in script.items()}
        self.fallback = fallback
        self.calls: List[Call] = []
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {}

    def infer(self, images, instruction, history=(), cancel=None):
        if cancel is not None:
            cancel.raise_if_cancelled()
        call = Call([img.label for img in images], instruction, history)
        key = call.booklet if call.kind == "booklet" else call.kind
        with self._lock:
            self.calls.append(call)
            n = self._counts.get(key, 0)
            self._counts[key] = n + 1

        responses = self.script.get(key)
        if not responses:
            if self.fallback is not None:
                return self.fallback(call)
            raise OracleError(f"no scripted response for {key}")
        response = responses[min(n, len(responses) - 1)]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(call)
        return response

    def calls_for(self, key: str) -> List[Call]:
        return [c for c in self.calls if (c.booklet if c.kind == "booklet" else c.kind) == key]


@pytest.fixture
def page_images():
    """Factory: page_images(n) -> n blank rendered pages."""
    def _make(count: int) -> List[PageImage]:
        return [make_page_image() for _ in range(count)]
    return _make


@pytest.fixture
def ten_page_structure():
    """Cover, 8 question pages over two booklets (Q1-6, Q7-10), answer page."""
    pages = [{"pageIndex": 0, "isCoverPage": True}]
    pages += [{"pageIndex": i, "paperLabel": "Booklet A"} for i in range(1, 5)]
    pages += [{"pageIndex": i, "paperLabel": "Booklet B"} for i in range(5, 9)]
    pages += [{"pageIndex": 9, "isAnswerSheet": True, "paperLabel": "Booklet A"}]
    booklets = [
        {"label": "Booklet A", "questionPrefix": "", "expectedQuestionCount": 6, "firstQuestionPageIndex": 1},
        {"label": "Booklet B", "questionPrefix": "", "expectedQuestionCount": 4, "firstQuestionPageIndex": 5},
    ]
    return structure_json(pages, booklets)
