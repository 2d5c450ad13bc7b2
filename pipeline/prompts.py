"""
Prompt templates for each oracle call.

Templates use str.format placeholders; literal JSON braces are doubled.
"""

from typing import Optional

from pipeline.models import PageKind, StructureResult


STRUCTURE_ANALYSIS_PROMPT = """You are an expert at analyzing Singapore primary/secondary school exam papers. All pages of the exam are provided as images in order. Each image is followed by its label, e.g. [Page 0]. Page indices are 0-based.

Your task is to understand the STRUCTURE of this exam. Do NOT extract individual question boundaries or answer content.

## 1. Header information
From the cover page or first page header:
- school, level (e.g. "P6"), subject, year, semester (e.g. "Prelim", "SA2"), title
- totalMarks: total marks as a string, empty string if unknown
- sections: e.g. "Section A: 28 questions x 1 mark = 28 marks" -> {{"name": "A", "type": "MCQ", "marks": 28, "questionCount": 28}}

## 2. Page classification
For EVERY page give exactly one entry:
- isCoverPage: true for cover / instruction pages with no questions
- isAnswerSheet: true for answer key / marking scheme / answer table pages (usually at the END)
- both false for question pages

## 3. Booklets
The document may hold several booklets or papers (Booklet A + Booklet B, Paper 1 + Paper 2).
- Question numbers that RESET to 1 start a new numbering sequence: give it a new questionPrefix ("" for the first, "P2-" for Paper 2)
- Booklets that CONTINUE the numbering (Booklet A Q1-15, Booklet B Q16-30) share the same questionPrefix
- firstQuestionPageIndex: the page where the booklet's first question appears
- firstQuestionYStartPct: how far down that page (0-100) the first question starts
- expectedQuestionCount: number of questions in this booklet, from the header or instructions

## 4. For each page, note which booklet it belongs to (paperLabel)

## OUTPUT FORMAT
Return ONLY valid JSON:
{{
  "header": {{
    "school": "...", "level": "...", "subject": "...", "year": "...",
    "semester": "...", "title": "...", "totalMarks": "...",
    "sections": [{{"name": "A", "type": "MCQ", "marks": 28, "questionCount": 28}}]
  }},
  "pages": [
    {{"pageIndex": 0, "isCoverPage": true, "isAnswerSheet": false, "paperLabel": "Booklet A"}},
    {{"pageIndex": 1, "isCoverPage": false, "isAnswerSheet": false, "paperLabel": "Booklet A"}},
    {{"pageIndex": 9, "isCoverPage": false, "isAnswerSheet": true, "paperLabel": ""}}
  ],
  "booklets": [
    {{
      "label": "Booklet A",
      "questionPrefix": "",
      "expectedQuestionCount": 30,
      "firstQuestionPageIndex": 1,
      "firstQuestionYStartPct": 12.0,
      "sections": [{{"name": "A", "type": "MCQ", "questionCount": 30}}]
    }}
  ]
}}

There are {page_count} pages: return exactly {page_count} page entries.
If there is only one booklet, still include it in "booklets" with questionPrefix "".
Return ONLY valid JSON."""


BOUNDARY_RULE = """### The ONE rule for ALL questions (MCQ and written alike):
- yStartPct = top of this question's number (e.g. "5."), minus 2-3% padding
- yEndPct = top of the NEXT WHOLE question number (e.g. "6."), minus 1%
- EVERYTHING between two consecutive WHOLE question numbers belongs to the first question
- Each question is ONE entry. Do NOT split sub-parts (a), (b), (c) into separate entries

### WHERE to find question numbers: LEFT MARGIN ONLY
- Question numbers are printed at the LEFT-MOST margin of the page
- MCQ options like "(1)", "(2)", "(3)", "(4)" are INDENTED. They are NOT question numbers
- YES: "1.", "2.", "24." at the left margin
- NO: "(a)", "(b)", "(i)", "(ii)" sub-parts, "(1)"-"(4)" MCQ options"""


QUESTION_EXTRACTION_PROMPT = """You are an expert at extracting question boundaries from Singapore school exam papers.

You are given the question pages of ONE booklet. Each image is followed by its ORIGINAL page label, e.g. [Page 4]. Use that number as pageIndex.

## Context from structure analysis:
{structure_context}

## This booklet
- Booklet: {booklet_label}
- Question prefix for your JSON output: "{question_prefix}" (the printed number on the page has no prefix)
- Questions expected: {first_question_num} to {last_question_num}

## Your task: Extract EVERY question's crop boundaries

{boundary_rule}

### Sequential extraction:
- Extract questions in order, starting at {first_question_num}
- Use the PREVIOUS question's yEndPct to guide the NEXT question's yStartPct (no gaps)
- Question continues from previous page: yStartPct = 0 or 1
- Last question on a page: yEndPct = just before the footer (90-95%)
- Written questions are large (15-50% of a page). If your crop is small, you are cutting off too early
- If numbers jump (e.g. 5, 6, 10), look again: you likely missed questions
- NEVER output invalid coordinates (yStartPct >= yEndPct)

## OUTPUT FORMAT
Return ONLY valid JSON:
{{
  "pages": [
    {{
      "pageIndex": 2,
      "questions": [
        {{"questionNum": "{question_prefix}{first_question_num}", "yStartPct": 12.0, "yEndPct": 35.0, "boundaryTop": "{first_question_num}", "boundaryBottom": "{second_question_num}"}}
      ]
    }}
  ]
}}

Return ONLY valid JSON."""


QUESTION_RETRY_PROMPT = """Your previous answer has numbering problems:
{feedback}

Look at the pages again and return the COMPLETE list of questions {first_question_num} to {last_question_num} for this booklet in the same JSON format.
Keep the boundaries you already got right: only fix the missing, duplicated or misnumbered questions.
Return ONLY valid JSON."""


ANSWER_EXTRACTION_PROMPT = """You are analyzing the answer key / answer sheet pages of a Singapore school exam paper.

You are given ONLY the answer key pages. Each image is followed by its ORIGINAL page label, e.g. [Page 9].

## Context from structure analysis:
{structure_context}

## Answer pages
{answer_page_context}

## Your task: Extract ALL answers with FULL WORKING STEPS

### How to read answer keys:
- Question labels may appear as "Q24", "Q24)", "24.", "1)", or just "24". Use the bare number
- MCQ answer keys are often TABLES: question number in one column, answer letter in the next
- For booklets with a question prefix, prefix the key (e.g. "P2-1")

### Classify each answer:
- "text": ONLY MCQ letters (A/B/C/D) or a single short value with NO working shown
- "image": everything else (working steps, diagrams, multi-line answers). When in doubt, prefer "image"

### For "image" answers:
- answerPageIndex: the ORIGINAL page index from the image label
- yStartPct / yEndPct: where the answer block starts and ends on that page (0=top, 100=bottom), with 1-2% padding
- value: the full working as text, every line, sub-parts labeled (a), (b), ... Use empty string for purely visual answers

## OUTPUT FORMAT
Return ONLY valid JSON:
{{
  "answers": {{
    "1": {{"type": "text", "value": "B"}},
    "29": {{"type": "image", "answerPageIndex": 8, "yStartPct": 10.0, "yEndPct": 30.0, "value": "(a) 3/4 x 12 = 9\\n(b) 9 + 6 = 15"}}
  }}
}}

Return ONLY valid JSON."""


REDO_QUESTION_PROMPT = """Find question "{question_num}" on this exam paper page and provide precise crop boundaries.

Context: {context}

{boundary_rule}

## Guidance:
- yStartPct = 0 means top of page, yEndPct = 100 means bottom of page
- If this is the last question on the page, extend yEndPct to just before the footer (90-95%)
- If question {question_num} has sub-parts, include ALL of them
- NEVER output invalid coordinates (yStartPct >= yEndPct)

Return ONLY valid JSON: {{"questionNum": "{question_num}", "yStartPct": 15.0, "yEndPct": 45.0}}"""


REDO_ANSWER_PROMPT = """Find the answer for question "{question_num}" on this answer key page.
{paper_context_line}
Question labels may appear as "Q{question_num}", "Q{question_num})", "{question_num}.", "{question_num})", or just "{question_num}", possibly inside a table.

Classify the answer:
- "text": ONLY an MCQ letter or a single short value with NO working shown
- "image": anything with working steps, diagrams or several lines. When in doubt, prefer "image"

For "image": give yStartPct and yEndPct on THIS page (1-2% padding) and transcribe the full working in "value".

Return ONLY valid JSON:
For text: {{"type": "text", "value": "B"}}
For image: {{"type": "image", "yStartPct": 15.0, "yEndPct": 35.0, "value": "(a) 3/4 x 12 = 9"}}

If you CANNOT find question "{question_num}" on this page, return: {{"type": "text", "value": ""}}"""


VALIDATE_CROP_PROMPT = """Look at this cropped image from an exam paper. I expect this to be question "{question_num}".

Check TWO things:
1. Is the question number "{display_num}" (or close to it) visible near the TOP of this image?
2. Does this image contain actual exam question content (not blank)?

Return JSON: {{"valid": true/false, "reason": "short explanation"}}

- valid = true if the question number is visible near the top AND the image has real content
- valid = false if the image is blank, the number is not visible, or a different question is shown"""


def _join(indices) -> str:
    return ", ".join(str(i) for i in indices) or "none"


def build_structure_context(structure: StructureResult) -> str:
    """Summarize the structure analysis for the extraction prompts."""
    header = structure.header
    lines = [
        f"Exam: {header.title}",
        f"Subject: {header.subject}, Level: {header.level}",
    ]
    if header.total_marks:
        lines.append(f"Total marks: {header.total_marks}")
    for booklet in structure.booklets:
        lines.append(
            f"\n{booklet.label} (prefix: \"{booklet.question_prefix}\", "
            f"expected {booklet.expected_question_count} questions):"
        )
        for section in booklet.sections:
            lines.append(f"  - Section {section.name}: {section.kind}, {section.question_count} questions")
    question_pages = [p.index for p in structure.pages_of_kind(PageKind.QUESTION)]
    answer_pages = [p.index for p in structure.pages_of_kind(PageKind.ANSWER)]
    lines.append(f"\nQuestion pages (0-based): {_join(question_pages)}")
    lines.append(f"Answer pages (0-based): {_join(answer_pages)}")
    return "\n".join(lines)


def build_answer_page_context(structure: StructureResult) -> str:
    """One line per answer page naming the booklet (and prefix) it answers."""
    lines = []
    for page in structure.pages_of_kind(PageKind.ANSWER):
        booklet = structure.booklet_for_label(page.paper_label)
        if booklet is not None:
            lines.append(
                f"[Page {page.index}] answers {booklet.label} "
                f"(key prefix: \"{booklet.question_prefix}\")"
            )
        else:
            lines.append(f"[Page {page.index}] booklet not identified: read the page header")
    return "\n".join(lines)


def redo_question_context(surrounding_questions) -> str:
    if surrounding_questions:
        return f"Other questions on this page: {', '.join(surrounding_questions)}"
    return "This may be the only question on this page."


def redo_answer_context_line(question_num: str, paper_context: Optional[str]) -> str:
    if not paper_context:
        return ""
    return (
        f"\nIMPORTANT: This answer key page is for \"{paper_context}\". Only look for "
        f"question {question_num} under the \"{paper_context}\" section. "
        f"Do NOT match answers from a different paper or section."
    )
