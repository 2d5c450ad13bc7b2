"""
PDF to page image conversion using pdfplumber.

The pipeline itself only consumes encoded page images; rendering is done
here for the command line tools.
"""

import gc
from pathlib import Path
from typing import Iterator, List, Optional

import pdfplumber
from PIL import Image

from config import PAGE_IMAGE_MAX_DIM, PDF_DIR, PDF_DPI
from utils.image_utils import encode_image, resize_image
from utils.oracle import PageImage


class PDFLoader:
    """Renders PDF pages to images."""

    def __init__(self, dpi: int = PDF_DPI, max_dim: Optional[int] = PAGE_IMAGE_MAX_DIM):
        self.dpi = dpi
        self.max_dim = max_dim

    def page_count(self, pdf_path: Path) -> int:
        with pdfplumber.open(pdf_path) as pdf:
            return len(pdf.pages)

    def render_page(self, pdf_path: Path, page_index: int) -> Image.Image:
        """Render one page (0-based) as a PIL Image."""
        with pdfplumber.open(pdf_path) as pdf:
            if not 0 <= page_index < len(pdf.pages):
                raise IndexError(f"Page {page_index} out of range (document has {len(pdf.pages)} pages)")
            return self._render(pdf.pages[page_index])

    def _render(self, page) -> Image.Image:
        image = page.to_image(resolution=self.dpi).original
        return resize_image(image.convert("RGB"), self.max_dim)

    def iterate_pages(self, pdf_path: Path) -> Iterator[Image.Image]:
        """Yield rendered pages one at a time."""
        with pdfplumber.open(pdf_path) as pdf:
            for page in pdf.pages:
                yield self._render(page)

    def load_page_images(self, pdf_path: Path) -> List[PageImage]:
        """
        Render every page and encode it for the oracle.
        """
        pages = []
        for image in self.iterate_pages(pdf_path):
            pages.append(encode_image(image))
            del image
            gc.collect()
        return pages


def list_pdfs(directory: Path = PDF_DIR) -> List[Path]:
    """List all PDF files in directory."""
    return sorted(directory.glob("*.pdf"))


def resolve_pdf(name: str, directory: Path = PDF_DIR) -> Path:
    """Accept a bare file name inside PDF_DIR or any path."""
    candidate = directory / name
    if candidate.exists():
        return candidate
    return Path(name)
