#!/usr/bin/env python3
"""
reextract_question.py - Re-extract one question (or answer) that came out wrong

Usage:
    export GEMINI_API_KEY="your-key"
    python3 reextract_question.py --pdf exam.pdf --page 4 --question 12
    python3 reextract_question.py --pdf exam.pdf --page 4 --question P2-3 --near P2-2,P2-4
    python3 reextract_question.py --pdf exam.pdf --page 17 --question 29 --answer --paper "Paper 2"
    python3 reextract_question.py --pdf exam.pdf --page 4 --question 12 --check

Pages are 0-based, like the page indices in <name>_analysis.json.
"""

import argparse
import json
import logging
import sys

from config import OUTPUT_DIR
from pipeline.errors import ReextractionError
from pipeline.pdf_loader import PDFLoader, resolve_pdf
from pipeline.reextract import redo_answer, redo_question, validate_crop
from utils.gemini_client import create_client
from utils.image_utils import crop_region, encode_image, save_image


def main():
    parser = argparse.ArgumentParser(description="Re-extract a single question or answer")
    parser.add_argument("--pdf", required=True, help="PDF file")
    parser.add_argument("--page", type=int, required=True, help="0-based page index")
    parser.add_argument("--question", required=True, help='Question number, e.g. "12" or "P2-3"')
    parser.add_argument("--near", default="", help="Comma-separated other questions on the page")
    parser.add_argument("--answer", action="store_true", help="Re-extract the answer instead")
    parser.add_argument("--paper", default="", help="Booklet/paper the answer page belongs to")
    parser.add_argument("--check", action="store_true", help="Validate the new crop afterwards")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    pdf_path = resolve_pdf(args.pdf)
    if not pdf_path.exists():
        print(f"[ERROR] Not found: {pdf_path}")
        sys.exit(1)

    loader = PDFLoader()
    print(f"\n[PAGE {args.page}] Rendering...")
    try:
        page_image = loader.render_page(pdf_path, args.page)
    except IndexError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    client = create_client()
    encoded = encode_image(page_image)

    try:
        if args.answer:
            entry = redo_answer(client, encoded, args.question, args.paper, page_index=args.page)
            print(json.dumps({args.question: entry.to_dict()}, indent=2, ensure_ascii=False))
            return

        near = [q.strip() for q in args.near.split(",") if q.strip()]
        question = redo_question(client, encoded, args.question, near, page_index=args.page)
        print(json.dumps({"pageIndex": args.page, **question.to_dict()}, indent=2))

        crop = crop_region(page_image, question.y_start_pct, question.y_end_pct)
        crop_path = OUTPUT_DIR / "reextract" / f"{pdf_path.stem}_q{args.question}_p{args.page:02d}.png"
        save_image(crop, crop_path)
        print(f"[OK] Saved crop to {crop_path}")

        if args.check:
            check = validate_crop(client, encode_image(crop), args.question)
            status = "OK" if check.valid else "SUSPECT"
            print(f"[{status}] {check.reason}")
    except ReextractionError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
