"""Batch input parsing: text and JSON-lines files into ordered work items.

Text files hold one prompt per line; blank lines and lines starting with
``#`` are ignored. Each prompt gets the id ``line-<n>`` from its 1-based line
number, so ids are stable across runs of the same file.

JSON-lines files hold one ``{"id": ..., "message": ...}`` object per line.
Lines that fail to parse, lack a field, or repeat an earlier id become
ParseError entries instead of work items.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .base import WorkItem, WorkItemResult
from .core import InputLimits, ProcessorConfig
from .strategies.errors import InputFileError

logger = logging.getLogger(__name__)

JSONL_SUFFIXES = (".jsonl", ".ndjson", ".json")


class InputFormat(Enum):
    """Supported batch input formats."""

    TEXT = "text"
    JSONL = "jsonl"

    @classmethod
    def detect(cls, path: str | Path) -> "InputFormat":
        """Pick a format from the file extension."""
        if Path(path).suffix.lower() in JSONL_SUFFIXES:
            return cls.JSONL
        return cls.TEXT


class ParseErrorKind(Enum):
    MALFORMED_JSON = "malformed_json"
    INVALID_FIELD = "invalid_field"
    DUPLICATE_ID = "duplicate_id"
    INVALID_CONTENT = "invalid_content"


@dataclass(frozen=True)
class ParseError:
    """
    A rejected input entry.

    item_id is the entry's own id when it had a usable one, otherwise a
    ``line-<n>`` id chosen not to clash with any other id in the file.
    """

    line_number: int
    order: int
    kind: ParseErrorKind
    reason: str
    item_id: str = ""

    def to_result(self) -> WorkItemResult:
        return WorkItemResult.skipped(self.item_id, self.order, reason=self.reason)


@dataclass
class ParsedInput:
    """Work items and rejected entries from one input file, in file order."""

    items: list[WorkItem] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    input_format: InputFormat = InputFormat.TEXT

    @property
    def total(self) -> int:
        return len(self.items) + len(self.errors)

    def error_counts(self) -> dict[str, int]:
        return dict(Counter(e.kind.value for e in self.errors))


class InputLine(BaseModel):
    """Schema of one JSON-lines entry; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", strict=True)

    id: str = Field(min_length=1)
    message: str

    @field_validator("id")
    @classmethod
    def id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("id cannot be whitespace only")
        return value


def check_prompt(prompt: str, limits: InputLimits) -> str | None:
    """
    Run content checks on a prompt.

    Returns:
        A reason string if the prompt is rejected, None if it is acceptable
    """
    if not prompt.strip():
        return "prompt is empty"
    if len(prompt.encode("utf-8")) > limits.max_prompt_bytes:
        return f"prompt exceeds {limits.max_prompt_bytes} bytes"
    if "\x00" in prompt:
        return "null byte detected in prompt"

    whitespace = sum(1 for ch in prompt if ch.isspace())
    if whitespace / len(prompt) > limits.max_whitespace_ratio:
        return "suspicious whitespace ratio"

    if len(prompt) > limits.repetition_min_length:
        _, most_common = Counter(prompt).most_common(1)[0]
        if most_common / len(prompt) > limits.max_repeated_char_ratio:
            return "excessive repetition detected"

    return None


def _describe_validation_error(exc: ValidationError) -> tuple[ParseErrorKind, str]:
    error = exc.errors()[0]
    if error["type"] == "json_invalid":
        return ParseErrorKind.MALFORMED_JSON, f"invalid JSON: {error.get('ctx', {}).get('error', error['msg'])}"
    if error["type"] == "model_type":
        return ParseErrorKind.MALFORMED_JSON, "entry is not a JSON object"
    location = ".".join(str(loc) for loc in error["loc"]) or "entry"
    if error["type"] == "missing":
        return ParseErrorKind.INVALID_FIELD, f"missing required field '{location}'"
    return ParseErrorKind.INVALID_FIELD, f"field '{location}': {error['msg']}"


def _unique_id(base: str, taken: set[str]) -> str:
    candidate, suffix = base, 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


class _Collector:
    """Assigns output order to items and errors as they are emitted."""

    def __init__(self, config: ProcessorConfig, input_format: InputFormat):
        self.config = config
        self.parsed = ParsedInput(input_format=input_format)

    def add_item(self, item_id: str, prompt: str, line_number: int) -> None:
        order = self.parsed.total
        if self.config.validate_input:
            reason = check_prompt(prompt, self.config.input_limits)
            if reason is not None:
                self.add_error(line_number, ParseErrorKind.INVALID_CONTENT, reason, item_id)
                return
        self.parsed.items.append(
            WorkItem(item_id=item_id, prompt=prompt, order=order, line_number=line_number)
        )

    def add_error(
        self, line_number: int, kind: ParseErrorKind, reason: str, item_id: str = ""
    ) -> None:
        logger.warning(f"⚠️  Invalid input on line {line_number}: {reason}")
        self.parsed.errors.append(
            ParseError(
                line_number=line_number,
                order=self.parsed.total,
                kind=kind,
                reason=reason,
                item_id=item_id,
            )
        )

    def finish(self) -> ParsedInput:
        """Give id-less errors a line-based id that no other entry uses."""
        taken = {item.item_id for item in self.parsed.items}
        taken.update(e.item_id for e in self.parsed.errors if e.item_id)
        errors = []
        for error in self.parsed.errors:
            if not error.item_id:
                error = replace(error, item_id=_unique_id(f"line-{error.line_number}", taken))
                taken.add(error.item_id)
            errors.append(error)
        self.parsed.errors = errors
        return self.parsed


def parse_text(lines, config: ProcessorConfig) -> ParsedInput:
    """Parse text lines: one prompt per non-blank, non-comment line."""
    collector = _Collector(config, InputFormat.TEXT)
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        collector.add_item(f"line-{line_number}", line, line_number)
    return collector.finish()


def parse_jsonl(lines, config: ProcessorConfig) -> ParsedInput:
    """Parse JSON-lines: one {"id", "message"} object per non-blank line."""
    collector = _Collector(config, InputFormat.JSONL)
    seen_ids: dict[str, int] = {}
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            entry = InputLine.model_validate_json(line)
        except ValidationError as e:
            kind, reason = _describe_validation_error(e)
            collector.add_error(line_number, kind, reason)
            continue

        if entry.id in seen_ids:
            collector.add_error(
                line_number,
                ParseErrorKind.DUPLICATE_ID,
                f"duplicate id '{entry.id}' (first seen on line {seen_ids[entry.id]})",
            )
            continue
        seen_ids[entry.id] = line_number
        collector.add_item(entry.id, entry.message, line_number)
    return collector.finish()


def parse_file(
    path: str | Path,
    config: ProcessorConfig | None = None,
    input_format: InputFormat | None = None,
) -> ParsedInput:
    """
    Parse a batch input file.

    Args:
        path: Input file path
        config: Processor config (controls content validation)
        input_format: Force a format instead of detecting it from the extension

    Returns:
        ParsedInput with work items and rejected entries in file order

    Raises:
        InputFileError: If the file cannot be read as UTF-8 text
    """
    config = config or ProcessorConfig()
    input_format = input_format or InputFormat.detect(path)
    parser = parse_jsonl if input_format is InputFormat.JSONL else parse_text

    try:
        with open(path, encoding="utf-8") as handle:
            parsed = parser(handle, config)
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(f"Cannot read input file {path}: {e}") from e

    logger.info(
        f"ℹ️  Parsed {path} ({input_format.value}): {len(parsed.items)} items, "
        f"{len(parsed.errors)} invalid"
    )
    return parsed
