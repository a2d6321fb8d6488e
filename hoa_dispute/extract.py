# hoa_dispute/extract.py
import asyncio
import io
import logging
from typing import List, Optional, Tuple

import pdfplumber
import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image
from pypdf import PdfReader

from .config import DEFAULT_OCR_LANG, MIN_TEXT_LENGTH, OCR_DPI
from .errors import InputError

logger = logging.getLogger("hoa-dispute.extract")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".gif", ".webp")

def is_image_upload(filename: Optional[str], content_type: Optional[str]) -> bool:
    if content_type and content_type.startswith("image/"):
        return True
    return bool(filename) and filename.lower().endswith(IMAGE_EXTENSIONS)

def ocr_language(language_note: Optional[str]) -> str:
    """Pick the Tesseract language pack from the user's free-form language note."""
    if language_note and "french" in language_note.lower():
        return "fra"
    return DEFAULT_OCR_LANG

def extract_native_text(raw_bytes: bytes) -> Tuple[str, int]:
    """
    Text layer of a PDF, pages joined by newlines. Returns (text, page_count).
    """
    pages_text: List[str] = []
    try:
        with pdfplumber.open(io.BytesIO(raw_bytes)) as pdf:
            for p in pdf.pages:
                pages_text.append((p.extract_text() or "").strip())
    except Exception as e:
        # Fallback: pypdf (robust but less layout-aware)
        logger.info("pdfplumber failed (%s); falling back to pypdf", type(e).__name__)
        pages_text = []
        try:
            reader = PdfReader(io.BytesIO(raw_bytes))
        except Exception as err:
            logger.warning("Not a readable PDF: %s", err)
            return "", 0
        if reader.is_encrypted:
            raise InputError("PDF is password-protected; upload an unlocked copy.")
        for page in reader.pages:
            pages_text.append((page.extract_text() or "").strip())
    return "\n".join(pages_text), len(pages_text)

def _ocr_image(img: Image.Image, lang: str) -> str:
    return (pytesseract.image_to_string(img, lang=lang) or "").strip()

def _rasterize(raw_bytes: bytes, page_count: Optional[int], is_image: bool) -> List[Image.Image]:
    if is_image:
        return [Image.open(io.BytesIO(raw_bytes))]
    if page_count:
        return convert_from_bytes(raw_bytes, dpi=OCR_DPI, first_page=1, last_page=page_count)
    return convert_from_bytes(raw_bytes, dpi=OCR_DPI)

async def extract_text_with_ocr(
    raw_bytes: bytes,
    lang: str = DEFAULT_OCR_LANG,
    page_count: Optional[int] = None,
    is_image: bool = False,
) -> str:
    """
    Rasterize and OCR every page concurrently, concatenated in page order.
    Pages that fail are logged and skipped; if rasterization itself fails the
    result is "" and the caller decides what that means.
    """
    try:
        images = await asyncio.to_thread(_rasterize, raw_bytes, page_count, is_image)
    except Exception as e:
        logger.warning("Rasterization failed: %s: %s", type(e).__name__, e)
        return ""

    outcomes = await asyncio.gather(
        *(asyncio.to_thread(_ocr_image, img, lang) for img in images),
        return_exceptions=True,
    )
    texts: List[str] = []
    for page_no, out in enumerate(outcomes, start=1):
        if isinstance(out, Exception):
            logger.warning("OCR failed on page %d: %s: %s", page_no, type(out).__name__, out)
            continue
        if out:
            texts.append(out)
    return "\n".join(texts)

async def extract_document_text(
    raw_bytes: bytes,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    language_note: Optional[str] = None,
) -> str:
    """Native text first; OCR when that comes back (nearly) empty."""
    is_image = is_image_upload(filename, content_type)
    text, page_count = ("", None) if is_image else await asyncio.to_thread(extract_native_text, raw_bytes)

    if len(text.strip()) < MIN_TEXT_LENGTH:
        lang = ocr_language(language_note)
        logger.info(
            "Native text too short (%d chars); running OCR (lang=%s, pages=%s)",
            len(text.strip()), lang, page_count or "all",
        )
        # A sub-threshold native fragment is never used on its own
        text = await extract_text_with_ocr(raw_bytes, lang, page_count=page_count, is_image=is_image)
    return text
