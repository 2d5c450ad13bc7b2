#!/usr/bin/env python3
"""
analyze_exam.py - Analyze exam PDFs with the Gemini extraction pipeline

For each PDF:
1. Renders pages to images (200 DPI)
2. Runs structure analysis, per-booklet question extraction and answer extraction
3. Writes <name>_analysis.json with pages, question bands and answers
4. Crops every question (and image answer) to PNG files

Usage:
    export GEMINI_API_KEY="your-key"
    python analyze_exam.py                      # Process all PDFs in pdfs/
    python analyze_exam.py --pdf "file.pdf"     # Process single PDF
    python analyze_exam.py --pdf file.pdf --no-crops
"""

import argparse
import gc
import json
import logging
import os
import re
import sys
import time
from pathlib import Path
from typing import Dict, List

import psutil

from config import CROPS_DIR_NAME, GEMINI_API_KEY_ENV, OUTPUT_DIR, PDF_DIR
from pipeline import BatchResult, ExamPipeline, ExtractionError, format_report
from pipeline.models import ImageAnswer
from pipeline.pdf_loader import PDFLoader, list_pdfs, resolve_pdf
from utils.gemini_client import create_client
from utils.image_utils import crop_region, load_image, save_image
from utils.oracle import PageImage


def get_memory():
    """Get current memory usage."""
    mem = psutil.virtual_memory()
    return f"{mem.percent:.1f}%"


def safe_name(text: str) -> str:
    """File-name friendly version of a question number ("P2-14" stays, "5 (a)" -> "5_a")."""
    return re.sub(r"[^A-Za-z0-9-]+", "_", text).strip("_") or "q"


def save_crops(result: BatchResult, images: List[PageImage], crops_dir: Path) -> int:
    """Crop every question band and image answer. Returns the number of files written."""
    written = 0
    decoded = {}

    def page_image(index):
        if index not in decoded:
            decoded[index] = load_image(images[index])
        return decoded[index]

    for page_index, question in result.questions:
        crop = crop_region(page_image(page_index), question.y_start_pct, question.y_end_pct)
        save_image(crop, crops_dir / f"q_{safe_name(question.question_num)}_p{page_index:02d}.png")
        written += 1

    for num, answer in result.answers.items():
        if isinstance(answer, ImageAnswer):
            crop = crop_region(page_image(answer.page_index), answer.y_start_pct, answer.y_end_pct)
            save_image(crop, crops_dir / f"a_{safe_name(num)}_p{answer.page_index:02d}.png")
            written += 1

    decoded.clear()
    gc.collect()
    return written


def process_pdf(pdf_path: Path, pipeline: ExamPipeline, out_dir: Path, crops: bool = True) -> Dict:
    """
    Process a single PDF file.

    Returns dict with stats about processing.
    """
    print(f"\n{'=' * 60}")
    print(f"Processing: {pdf_path.name}")
    print(f"{'=' * 60}")

    stats = {
        "pdf": pdf_path.name,
        "pages": 0,
        "questions": 0,
        "answers": 0,
        "issues": 0,
        "errors": [],
    }

    started = time.time()
    images = PDFLoader().load_page_images(pdf_path)
    stats["pages"] = len(images)
    print(f"[INFO] Rendered {len(images)} pages")
    print(f"[INFO] Memory: {get_memory()}")

    try:
        result = pipeline.analyze(images)
    except ExtractionError as e:
        print(f"[ERROR] {e}")
        stats["errors"].append(str(e))
        return stats

    stats["questions"] = len(result.questions)
    stats["answers"] = len(result.answers)
    stats["issues"] = len(result.report.issues)

    out_dir.mkdir(parents=True, exist_ok=True)
    json_path = out_dir / f"{pdf_path.stem}_analysis.json"
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(include_report=True), f, indent=2, ensure_ascii=False)
    print(f"[OK] Saved {json_path}")

    if crops:
        crops_dir = out_dir / CROPS_DIR_NAME / pdf_path.stem
        count = save_crops(result, images, crops_dir)
        print(f"[OK] Saved {count} crops to {crops_dir}")

    print()
    print(format_report(result.report, title=pdf_path.name))
    print(f"[INFO] Took {time.time() - started:.1f}s, memory: {get_memory()}")

    del images
    gc.collect()
    return stats


def main():
    parser = argparse.ArgumentParser(description="Analyze exam PDFs with Gemini")
    parser.add_argument("--pdf", type=str, help="Specific PDF to process")
    parser.add_argument("--out", type=str, default=str(OUTPUT_DIR), help="Output directory")
    parser.add_argument("--no-crops", action="store_true", help="Don't write crop images")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Check API key
    if not os.environ.get(GEMINI_API_KEY_ENV):
        print(f"[ERROR] {GEMINI_API_KEY_ENV} not set!")
        print("Get a free key at: https://aistudio.google.com/app/apikey")
        print(f"Then: export {GEMINI_API_KEY_ENV}='your-key'")
        sys.exit(1)

    print("=" * 60)
    print("EXAM PAPER EXTRACTION PIPELINE")
    print("=" * 60)
    print(f"\n[INIT] Memory: {get_memory()}")

    client = create_client()
    pipeline = ExamPipeline(client)

    if args.pdf:
        pdfs = [resolve_pdf(args.pdf)]
    else:
        pdfs = list_pdfs(PDF_DIR)

    if not pdfs:
        print("[ERROR] No PDFs found!")
        sys.exit(1)

    print(f"\n[INFO] Found {len(pdfs)} PDF(s) to process")

    all_stats = []
    for pdf_path in pdfs:
        if not pdf_path.exists():
            print(f"[SKIP] Not found: {pdf_path}")
            continue
        all_stats.append(process_pdf(pdf_path, pipeline, Path(args.out), crops=not args.no_crops))

    # Summary
    print(f"\n{'=' * 60}")
    print("SUMMARY")
    print("=" * 60)
    for s in all_stats:
        status = "FAILED" if s["errors"] else ("OK" if not s["issues"] else f"{s['issues']} issue(s)")
        print(f"  {s['pdf']}: {s['pages']} pages, {s['questions']} questions, {s['answers']} answers [{status}]")

    if any(s["errors"] for s in all_stats):
        sys.exit(1)


if __name__ == "__main__":
    main()
