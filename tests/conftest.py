import io
import sys
import zipfile
from pathlib import Path

import pytest

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.settings import Settings
from storybook.alignment.engine import RecognizedToken
from storybook.ingestion.document_parser import DocumentParser
from storybook.ingestion.segmenter import normalize_word
from storybook.pipeline.job_processor import JobProcessor
from storybook.pipeline.narrator import ChapterNarrator
from storybook.storage.models import BookSourceCreate
from storybook.storage.sqlite_repo import SQLiteRepository
from storybook.tts.base import (
    RecognitionResult,
    SpeechRecognitionAdapter,
    SpeechSynthesisAdapter,
    SynthesisResult,
)


STORY_TEXT = """Capítulo 1: El mercado

María camina al mercado con su madre. Compran frutas frescas y pan caliente para la familia.

Part 1 – Vocabulary Support
el mercado = the market
la fruta = the fruit

Capítulo 2: La playa

El sábado la familia viaja a la playa. Los niños juegan en la arena durante toda la tarde.
"""

WORD_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"


# ==================== Manuscript builders ====================

def docx_paragraph(text: str, style: str = None, size_pt: float = None, bold: bool = False) -> str:
    ppr = f'<w:pPr><w:pStyle w:val="{style}"/></w:pPr>' if style else ""
    rpr_parts = []
    if bold:
        rpr_parts.append("<w:b/>")
    if size_pt is not None:
        rpr_parts.append(f'<w:sz w:val="{int(size_pt * 2)}"/>')
    rpr = f"<w:rPr>{''.join(rpr_parts)}</w:rPr>" if rpr_parts else ""
    return f"<w:p>{ppr}<w:r>{rpr}<w:t xml:space=\"preserve\">{text}</w:t></w:r></w:p>"


def build_docx(paragraphs: list[str]) -> bytes:
    """Minimal DOCX container holding word/document.xml."""
    document = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{WORD_NS}"><w:body>'
        + "".join(paragraphs)
        + "</w:body></w:document>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("[Content_Types].xml", '<?xml version="1.0"?><Types/>')
        zf.writestr("word/document.xml", document)
    return buffer.getvalue()


def build_epub(path: Path, chapters: list[tuple[str, list[str]]]) -> Path:
    """Write an EPUB with one spine document per (title, paragraphs)."""
    from ebooklib import epub

    book = epub.EpubBook()
    book.set_identifier("storybook-test")
    book.set_title("Cuentos")
    book.set_language("es")

    items = []
    for position, (title, paragraphs) in enumerate(chapters):
        item = epub.EpubHtml(title=title, file_name=f"chap_{position}.xhtml", lang="es")
        body = "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
        item.content = f"<html><body><h1>{title}</h1>{body}</body></html>"
        book.add_item(item)
        items.append(item)

    book.toc = tuple(items)
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = items
    epub.write_epub(str(path), book)
    return path


# ==================== Fake speech providers ====================

class FakeSynthesizer(SpeechSynthesisAdapter):
    """Returns fixed bytes and speaks the text unchanged."""

    def __init__(self):
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    def synthesize(self, text: str) -> SynthesisResult:
        self.calls.append(text)
        return SynthesisResult(audio=b"ID3-fake-audio", spoken_text=text, voice_id="test-voice")


class FakeRecognizer(SpeechRecognitionAdapter):
    """
    Recognizes whatever the paired synthesizer last spoke.

    Each word takes 0.4s followed by a 0.1s gap; words whose normalized
    form is in drop are left out.
    """

    def __init__(self, synthesizer: FakeSynthesizer, drop: set = None, empty: bool = False):
        self.synthesizer = synthesizer
        self.drop = drop or set()
        self.empty = empty

    @property
    def name(self) -> str:
        return "fake"

    def transcribe(self, audio_path: Path, language: str = "es") -> RecognitionResult:
        if self.empty:
            return RecognitionResult(text="", tokens=[], duration=0.0)

        tokens = []
        clock = 0.0
        for word in self.synthesizer.calls[-1].split():
            normalized = normalize_word(word)
            if not normalized:
                continue
            if normalized not in self.drop:
                tokens.append(RecognizedToken(normalized, round(clock, 3), round(clock + 0.4, 3)))
            clock += 0.5
        return RecognitionResult(
            text=" ".join(token.word for token in tokens),
            tokens=tokens,
            duration=round(clock, 3),
        )


# ==================== Fixtures ====================

@pytest.fixture
def repository(tmp_path):
    """Fresh SQLite repository per test."""
    return SQLiteRepository(tmp_path / "storybook.db")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        database_path=tmp_path / "data" / "storybook.db",
        audio_dir=tmp_path / "data" / "audio",
    )


@pytest.fixture
def story_file(tmp_path):
    path = tmp_path / "historia.txt"
    path.write_text(STORY_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def fake_synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def fake_recognizer(fake_synthesizer):
    return FakeRecognizer(fake_synthesizer)


@pytest.fixture
def narrator(tmp_path, fake_synthesizer, fake_recognizer):
    return ChapterNarrator(fake_synthesizer, fake_recognizer, audio_dir=tmp_path / "audio")


@pytest.fixture
def processor(repository, narrator):
    """Processor without a worker pool; jobs run inline."""
    return JobProcessor(repository, DocumentParser(), narrator=narrator)


@pytest.fixture
def make_source(repository, story_file):
    """Register a manuscript as a book source."""

    def _make(path: Path = None, book_id: str = "book-1"):
        path = path or story_file
        return repository.create_book_source(BookSourceCreate(
            original_file_name=path.name,
            file_url=str(path),
            file_size=path.stat().st_size if path.exists() else 0,
            book_id=book_id,
        ))

    return _make
