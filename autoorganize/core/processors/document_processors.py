"""
Per-format text processors.

Turns the decoded body of a file into the plain text that is hashed,
stored, extracted and indexed. Processors are picked by file extension,
falling back to the declared content type for inline content.
"""

import csv
import io
import json

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from autoorganize.utils.exceptions import ValidationError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

# Rows kept from a CSV file; the rest are summarized
MAX_CSV_ROWS = 1000


class ProcessedContent(BaseModel):
    """Plain text produced by a processor."""

    text: str = Field(..., description="Extracted plain text")
    title: str | None = Field(default=None, description="Title found in the content itself")
    metadata: dict = Field(default_factory=dict, description="Format and size statistics")


def _stats(text: str, fmt: str, **extra) -> dict:
    return {
        "format": fmt,
        "word_count": len(text.split()),
        "char_count": len(text),
        **extra,
    }


class TextProcessor:
    """Plain text, markdown and similar formats pass through unchanged."""

    format = "text"

    def process(self, text: str) -> ProcessedContent:
        return ProcessedContent(text=text, metadata=_stats(text, self.format))


class HtmlProcessor:
    """Visible body text, with the ``<title>`` element as title."""

    format = "html"

    def process(self, text: str) -> ProcessedContent:
        soup = BeautifulSoup(text, "lxml")

        title = None
        if soup.title and soup.title.string:
            title = soup.title.string.strip() or None

        for tag in soup(["script", "style", "noscript", "template", "head"]):
            tag.decompose()

        body = soup.get_text(separator="\n", strip=True)
        return ProcessedContent(text=body, title=title, metadata=_stats(body, self.format))


class CsvProcessor:
    """Header line followed by one numbered line per row."""

    format = "csv"

    def __init__(self, delimiter: str = ","):
        self.delimiter = delimiter

    def process(self, text: str) -> ProcessedContent:
        try:
            rows = list(csv.reader(io.StringIO(text), delimiter=self.delimiter))
        except csv.Error as e:
            raise ValidationError(f"Malformed CSV: {e}", {"format": self.format}) from e

        if not rows:
            return ProcessedContent(text="", metadata=_stats("", self.format, row_count=0))

        header, records = rows[0], rows[1:]
        lines = [f"Headers: {', '.join(header)}", ""]
        for number, record in enumerate(records[:MAX_CSV_ROWS], start=1):
            lines.append(f"Row {number}: {', '.join(record)}")
        if len(records) > MAX_CSV_ROWS:
            lines.append(f"... and {len(records) - MAX_CSV_ROWS} more rows")

        body = "\n".join(lines)
        return ProcessedContent(
            text=body, metadata=_stats(body, self.format, row_count=len(records))
        )


class JsonProcessor:
    """Parsed and re-serialized with indentation."""

    format = "json"

    def process(self, text: str) -> ProcessedContent:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed JSON: {e}", {"format": self.format}) from e

        body = json.dumps(data, indent=2, ensure_ascii=False)
        title = None
        if isinstance(data, dict) and isinstance(data.get("title"), str):
            title = data["title"].strip() or None
        return ProcessedContent(text=body, title=title, metadata=_stats(body, self.format))


PROCESSORS = {
    ".html": HtmlProcessor,
    ".htm": HtmlProcessor,
    ".csv": CsvProcessor,
    ".tsv": lambda: CsvProcessor(delimiter="\t"),
    ".json": JsonProcessor,
}

CONTENT_TYPES = {
    "text/html": HtmlProcessor,
    "application/xhtml+xml": HtmlProcessor,
    "text/csv": CsvProcessor,
    "text/tab-separated-values": lambda: CsvProcessor(delimiter="\t"),
    "application/json": JsonProcessor,
}


def get_processor(suffix: str | None = None, content_type: str | None = None):
    """
    Pick the processor for a file extension or content type.

    Args:
        suffix: File extension including the dot (case-insensitive)
        content_type: MIME type, consulted when the extension is unknown

    Returns:
        A processor instance; ``TextProcessor`` when nothing matches
    """
    factory = PROCESSORS.get((suffix or "").lower())
    if factory is None and content_type:
        factory = CONTENT_TYPES.get(content_type.split(";", 1)[0].strip().lower())
    return (factory or TextProcessor)()


def process_content(
    text: str, suffix: str | None = None, content_type: str | None = None
) -> ProcessedContent:
    """Run the matching processor over decoded text."""
    processor = get_processor(suffix, content_type)
    processed = processor.process(text)
    logger.debug(
        f"Processed {processor.format} content",
        extra={"format": processor.format, "chars": len(processed.text)},
    )
    return processed
