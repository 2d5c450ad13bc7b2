"""
Tests for pipeline.pdf_loader (PDFs generated with Pillow)
"""
import pytest
from PIL import Image

from pipeline.pdf_loader import PDFLoader, list_pdfs, resolve_pdf
from utils.image_utils import load_image


@pytest.fixture
def three_page_pdf(tmp_path):
    pages = [Image.new("RGB", (300, 400), color) for color in ("white", "gray", "black")]
    path = tmp_path / "exam.pdf"
    pages[0].save(path, "PDF", save_all=True, append_images=pages[1:])
    return path


def test_page_count(three_page_pdf):
    assert PDFLoader().page_count(three_page_pdf) == 3


def test_load_page_images_when_pdf_then_one_encoded_image_per_page(three_page_pdf):
    pages = PDFLoader(dpi=72, max_dim=200).load_page_images(three_page_pdf)
    assert len(pages) == 3
    assert all(p.mime_type == "image/jpeg" for p in pages)
    assert max(load_image(pages[0]).size) <= 200


def test_render_page_when_out_of_range_then_index_error(three_page_pdf):
    with pytest.raises(IndexError):
        PDFLoader(dpi=72).render_page(three_page_pdf, 3)


def test_list_and_resolve_pdfs(three_page_pdf, tmp_path):
    assert list_pdfs(tmp_path) == [three_page_pdf]
    assert resolve_pdf("exam.pdf", tmp_path) == three_page_pdf
