"""
Manuscript Readers
==================
Extract ordered text blocks from DOCX, EPUB and plain-text manuscripts.

Readers only report what the container says about each block (style,
font size, bold, heading tag). Deciding what counts as a chapter heading is
left to the document parser.
"""

import io
import logging
import re
import tempfile
import zipfile
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import ebooklib
from ebooklib import epub
from bs4 import BeautifulSoup

from storybook.errors import EmptyDocumentError, UnsupportedFormatError


logger = logging.getLogger(__name__)

# Chapter keyword at the start of a short line
CHAPTER_KEYWORD = re.compile(r"^(capítulo|capitulo|chapter)\b", re.IGNORECASE)

_MARKDOWN_HEADING = re.compile(r"^#{1,2}\s+(.+?)\s*#*$")
_DOCX_HEADING_STYLE = re.compile(r"^(title|heading\s?[12]|t[ií]tulo\s?[12]?)$", re.IGNORECASE)
_EPUB_HEADING_TAGS = ("h1", "h2", "h3")
_EPUB_BLOCK_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "li")


@dataclass
class TextBlock:
    """One paragraph-level block of manuscript text."""
    text: str
    marked_heading: bool = False
    font_size: Optional[float] = None
    bold: bool = False


# ==================== DOCX ====================

def _run_text(run) -> str:
    parts = []
    for node in run.find_all(["w:t", "w:tab", "w:br", "w:cr"]):
        if node.name == "t":
            parts.append(node.get_text())
        elif node.name == "tab":
            parts.append("\t")
        else:
            parts.append("\n")
    return "".join(parts)


def _run_font_size(run) -> Optional[float]:
    size = run.find("w:sz")
    if size is None:
        return None
    try:
        # w:sz is expressed in half-points
        return int(size.get("w:val")) / 2
    except (TypeError, ValueError):
        return None


def _run_is_bold(run) -> bool:
    bold = run.find("w:b")
    if bold is None:
        return False
    return bold.get("w:val", "true").lower() not in ("0", "false", "off")


def _docx_block(paragraph) -> Optional[TextBlock]:
    sizes: Counter = Counter()
    bold_chars = 0
    texts = []

    for run in paragraph.find_all("w:r"):
        text = _run_text(run)
        if not text:
            continue
        texts.append(text)
        size = _run_font_size(run)
        if size is not None:
            sizes[size] += len(text)
        if _run_is_bold(run):
            bold_chars += len(text)

    text = "".join(texts).strip()
    if not text:
        return None

    style = paragraph.find("w:pStyle")
    style_name = style.get("w:val", "") if style is not None else ""

    return TextBlock(
        text=text,
        marked_heading=bool(_DOCX_HEADING_STYLE.match(style_name)),
        font_size=sizes.most_common(1)[0][0] if sizes else None,
        bold=bold_chars * 2 > len("".join(texts)),
    )


def read_docx(data: bytes) -> list[TextBlock]:
    """
    Extract paragraphs from a DOCX container.

    Args:
        data: Raw DOCX bytes

    Returns:
        Text blocks in document order

    Raises:
        UnsupportedFormatError: Not a zip or missing word/document.xml
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            if "word/document.xml" not in zf.namelist():
                raise UnsupportedFormatError(
                    "Missing word/document.xml",
                    details="Required DOCX structure file not found"
                )
            xml = zf.read("word/document.xml")
    except zipfile.BadZipFile:
        raise UnsupportedFormatError("Not a valid ZIP archive - DOCX may be corrupted")

    soup = BeautifulSoup(xml, "lxml-xml")
    body = soup.find("w:body") or soup

    blocks = []
    for paragraph in body.find_all("w:p"):
        block = _docx_block(paragraph)
        if block is not None:
            blocks.append(block)

    logger.debug(f"DOCX reader extracted {len(blocks)} paragraphs")
    return blocks


# ==================== EPUB ====================

def _html_blocks(html_content: bytes) -> list[TextBlock]:
    soup = BeautifulSoup(html_content, "lxml")

    for element in soup(["script", "style", "nav"]):
        element.decompose()

    root = soup.body or soup
    blocks = []
    for element in root.find_all(_EPUB_BLOCK_TAGS):
        # Nested block elements are reported by their innermost tag
        if element.find(_EPUB_BLOCK_TAGS):
            continue
        text = " ".join(element.get_text(" ", strip=True).split())
        if text:
            blocks.append(TextBlock(text=text, marked_heading=element.name in _EPUB_HEADING_TAGS))

    if not blocks:
        text = root.get_text(separator="\n", strip=True)
        blocks = [TextBlock(text=line) for line in text.splitlines() if line.strip()]

    return blocks


def read_epub(path: Path) -> list[TextBlock]:
    """
    Extract blocks from the spine documents of an EPUB, in reading order.

    Raises:
        UnsupportedFormatError: If EbookLib cannot open the container
    """
    try:
        book = epub.read_epub(str(path))
    except (epub.EpubException, zipfile.BadZipFile, KeyError) as e:
        raise UnsupportedFormatError(f"Failed to read EPUB: {e}", file_path=path)

    blocks = []
    for item_id, _linear in book.spine:
        item = book.get_item_with_id(item_id)
        if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue
        blocks.extend(_html_blocks(item.get_content()))

    logger.debug(f"EPUB reader extracted {len(blocks)} blocks from {path.name}")
    return blocks


def read_epub_bytes(data: bytes) -> list[TextBlock]:
    """EbookLib reads from a path, so spill bytes to a temporary file."""
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "upload.epub"
        path.write_bytes(data)
        return read_epub(path)


# ==================== Plain text ====================

def read_text(data: bytes) -> list[TextBlock]:
    """
    Extract blocks from UTF-8 text or markdown.

    A heading line (markdown `#`/`##` or a chapter keyword) at the top of a
    paragraph is split off into its own block.

    Raises:
        UnsupportedFormatError: If the bytes are not valid UTF-8
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise UnsupportedFormatError("Text manuscript is not valid UTF-8")

    blocks = []
    for paragraph in re.split(r"\r?\n\s*\r?\n", text):
        lines = [line.strip() for line in paragraph.strip().splitlines()]
        lines = [line for line in lines if line]
        if not lines:
            continue

        first = lines[0]
        markdown = _MARKDOWN_HEADING.match(first)
        if markdown or CHAPTER_KEYWORD.match(first):
            title = markdown.group(1) if markdown else first
            blocks.append(TextBlock(text=title, marked_heading=bool(markdown)))
            lines = lines[1:]

        if lines:
            blocks.append(TextBlock(text="\n".join(lines)))

    return blocks


# ==================== Dispatch ====================

SUPPORTED_EXTENSIONS = (".docx", ".epub", ".txt", ".md")


def read_blocks(data: bytes, filename: str) -> list[TextBlock]:
    """
    Read a manuscript by its file extension.

    Raises:
        UnsupportedFormatError: Unknown extension or unreadable container
        EmptyDocumentError: No extractable text
    """
    extension = Path(filename).suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError(
            f"Unsupported file type: {extension or filename}",
            details=f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    if not data:
        raise EmptyDocumentError(file_path=Path(filename))

    if extension == ".docx":
        blocks = read_docx(data)
    elif extension == ".epub":
        blocks = read_epub_bytes(data)
    else:
        blocks = read_text(data)

    if not any(block.text.strip() for block in blocks):
        raise EmptyDocumentError(file_path=Path(filename))

    return blocks
