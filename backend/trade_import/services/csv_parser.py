"""Delimited text parsing for broker exports.

Turns raw bytes or text into header + row dictionaries, sorting problems
into critical ones (quote or delimiter corruption, the file cannot be
trusted) and tolerable ones (a row with too few or too many fields).
"""

import csv
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from io import StringIO
from itertools import islice

logger = logging.getLogger(__name__)

DELIMITERS = [",", ";", "\t", "|"]
DELIMITER_SAMPLE_LINES = 5
STRUCTURE_SAMPLE_LINES = 10

# U+FFFD replacement characters, or UTF-8 read as latin-1 ("Ã©", "â€™")
_GARBLED = re.compile("\ufffd|\u00c3[\u0080-\u00bf]|\u00e2\u20ac")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")
_LOOKS_LIKE_DATA = re.compile(r"^[\d$€£().,/:;\s-]+$")


class ParseErrorSeverity(str, Enum):
    CRITICAL = "critical"
    TOLERABLE = "tolerable"


@dataclass(frozen=True)
class CSVParseIssue:
    """A problem found while parsing; line is the physical line number (1-based)."""

    message: str
    severity: ParseErrorSeverity
    code: str
    line: int | None = None


@dataclass
class CSVParseResult:
    """Parsed rows plus everything learned about the file along the way."""

    rows: list[dict[str, str | None]] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)
    delimiter: str = ","
    encoding: str | None = None
    errors: list[CSVParseIssue] = field(default_factory=list)

    @property
    def critical_errors(self) -> list[CSVParseIssue]:
        return [e for e in self.errors if e.severity == ParseErrorSeverity.CRITICAL]

    @property
    def tolerable_errors(self) -> list[CSVParseIssue]:
        return [e for e in self.errors if e.severity == ParseErrorSeverity.TOLERABLE]

    @property
    def has_critical_errors(self) -> bool:
        return bool(self.critical_errors)


@dataclass
class StructureCheck:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass
class CSVPreview:
    headers: list[str]
    rows: list[dict[str, str | None]]
    detected_delimiter: str
    total_estimated_rows: int


def normalize_headers(headers: list[str]) -> list[str]:
    """Snake-case header names ("Trans Code" -> "trans_code", "Fees & Comm" -> "fees_comm")."""
    return [_NON_WORD.sub("_", h.strip()).strip("_").lower() for h in headers]


class CSVParser:
    """Parser for broker CSV exports.

    Example usage:
        parser = CSVParser()
        result = parser.parse_bytes(file_content)
        if not result.has_critical_errors:
            for row in result.rows:
                ...
    """

    def decode(self, content: bytes, encoding: str | None = None) -> tuple[str, str]:
        """Decode file bytes.

        Uses the override when given, otherwise UTF-8 (BOM tolerated) with a
        latin-1 fallback, which never fails.

        Returns:
            Tuple of (text, encoding used)

        Raises:
            UnicodeDecodeError: If an explicit encoding does not fit the bytes
            LookupError: If the explicit encoding is unknown
        """
        if encoding:
            return content.decode(encoding), encoding
        try:
            return content.decode("utf-8-sig"), "utf-8"
        except UnicodeDecodeError:
            logger.info("File is not valid UTF-8, falling back to latin-1")
            return content.decode("latin-1"), "latin-1"

    def detect_delimiter(self, text: str) -> str:
        """Pick the candidate delimiter occurring most often in the first lines; comma on ties."""
        lines = [line for line in text.splitlines() if line.strip()][:DELIMITER_SAMPLE_LINES]
        best, best_count = ",", 0
        for delimiter in DELIMITERS:
            count = sum(line.count(delimiter) for line in lines)
            if count > best_count:
                best, best_count = delimiter, count
        return best

    def parse_bytes(
        self, content: bytes, delimiter: str | None = None, encoding: str | None = None
    ) -> CSVParseResult:
        try:
            text, used_encoding = self.decode(content, encoding)
        except (UnicodeDecodeError, LookupError) as e:
            return CSVParseResult(
                delimiter=delimiter or ",",
                encoding=encoding,
                errors=[
                    CSVParseIssue(
                        message=f"Could not decode file as {encoding}: {e}",
                        severity=ParseErrorSeverity.CRITICAL,
                        code="encoding_error",
                    )
                ],
            )
        result = self.parse_text(text, delimiter)
        result.encoding = used_encoding
        return result

    def parse_text(self, text: str, delimiter: str | None = None) -> CSVParseResult:
        """Parse delimited text into header-keyed rows.

        Values are trimmed and empty cells become None. Blank lines are
        skipped. Short rows are padded and long rows truncated, each noted as
        a tolerable issue; broken quoting stops parsing with a critical issue.
        """
        text = text.lstrip("\ufeff")
        delimiter = delimiter or self.detect_delimiter(text)
        result = CSVParseResult(delimiter=delimiter)

        if not text.strip():
            result.errors.append(
                CSVParseIssue(
                    message="CSV input is empty",
                    severity=ParseErrorSeverity.CRITICAL,
                    code="empty_input",
                )
            )
            return result

        reader = csv.reader(StringIO(text, newline=""), delimiter=delimiter, strict=True)
        try:
            for record in reader:
                if not any(cell.strip() for cell in record):
                    continue
                if not result.headers:
                    result.headers = self._unique_headers(record)
                    continue
                result.rows.append(self._to_row(record, result, reader.line_num))
        except csv.Error as e:
            logger.warning("CSV parse aborted at line %d: %s", reader.line_num, e)
            result.errors.append(
                CSVParseIssue(
                    message=f"Malformed CSV near line {reader.line_num}: {e}",
                    severity=ParseErrorSeverity.CRITICAL,
                    code="malformed_quotes",
                    line=reader.line_num,
                )
            )

        if result.tolerable_errors:
            logger.warning(
                "Parsed %d rows with %d field-count mismatches",
                len(result.rows),
                len(result.tolerable_errors),
            )
        logger.debug(
            "Parsed %d rows, %d columns, delimiter %r",
            len(result.rows),
            len(result.headers),
            delimiter,
        )
        return result

    def _to_row(
        self, record: list[str], result: CSVParseResult, line: int
    ) -> dict[str, str | None]:
        expected = len(result.headers)
        if len(record) < expected:
            result.errors.append(
                CSVParseIssue(
                    message=f"Line {line} has {len(record)} fields, expected {expected}",
                    severity=ParseErrorSeverity.TOLERABLE,
                    code="too_few_fields",
                    line=line,
                )
            )
            record = record + [""] * (expected - len(record))
        elif len(record) > expected:
            extra = record[expected:]
            # Trailing delimiters are common and harmless
            if any(cell.strip() for cell in extra):
                result.errors.append(
                    CSVParseIssue(
                        message=f"Line {line} has {len(record)} fields, expected {expected}",
                        severity=ParseErrorSeverity.TOLERABLE,
                        code="too_many_fields",
                        line=line,
                    )
                )
            record = record[:expected]

        return {
            header: (value.strip() or None)
            for header, value in zip(result.headers, record, strict=True)
        }

    @staticmethod
    def _unique_headers(record: list[str]) -> list[str]:
        headers: list[str] = []
        seen: dict[str, int] = {}
        for index, raw in enumerate(record):
            name = raw.strip() or f"column_{index + 1}"
            if name in seen:
                seen[name] += 1
                name = f"{name}_{seen[name]}"
            else:
                seen[name] = 1
            headers.append(name)
        return headers

    def validate_structure(self, text: str) -> StructureCheck:
        """Cheap pre-parse sanity check with remediation suggestions."""
        issues: list[str] = []
        suggestions: list[str] = []

        text = text.lstrip("\ufeff")
        if not text.strip():
            return StructureCheck(
                is_valid=False,
                issues=["File is empty"],
                suggestions=["Export the transaction history again from your broker"],
            )

        delimiter = self.detect_delimiter(text)
        lines = [line for line in text.splitlines() if line.strip()][:STRUCTURE_SAMPLE_LINES]
        sample = list(csv.reader(lines, delimiter=delimiter))

        header = sample[0] if sample else []
        if len(header) < 2:
            issues.append("Only one column found in the header row")
            suggestions.append(
                "Check the delimiter; supported delimiters are comma, semicolon, tab and pipe"
            )
        elif all(_LOOKS_LIKE_DATA.match(cell.strip() or "0") for cell in header):
            issues.append("Missing header row: the first row looks like data")
            suggestions.append("Add a header row with column names as the first line")

        counts = sorted({len(record) for record in sample if record})
        if len(counts) > 1:
            issues.append(
                f"Inconsistent column counts in the first {len(lines)} lines: "
                f"{', '.join(str(c) for c in counts)}"
            )
            suggestions.append("Quote values that contain the delimiter, or remove summary lines")

        if _GARBLED.search(text):
            issues.append("File contains garbled characters (possible encoding problem)")
            suggestions.append("Re-export the file as UTF-8, or set the encoding explicitly")

        return StructureCheck(is_valid=not issues, issues=issues, suggestions=suggestions)

    def preview(self, text: str, max_rows: int = 5, delimiter: str | None = None) -> CSVPreview:
        """Headers and the first rows, reading no further than needed."""
        text = text.lstrip("\ufeff")
        delimiter = delimiter or self.detect_delimiter(text)
        non_blank = (line for line in StringIO(text) if line.strip())
        reader = csv.reader(non_blank, delimiter=delimiter)

        header = next(reader, None)
        if header is None:
            return CSVPreview(
                headers=[], rows=[], detected_delimiter=delimiter, total_estimated_rows=0
            )
        headers = self._unique_headers(header)

        rows = []
        for record in islice(reader, max_rows):
            padded = (record + [""] * len(headers))[: len(headers)]
            rows.append({h: (v.strip() or None) for h, v in zip(headers, padded, strict=True)})

        # Line count, so quoted multi-line values make this an estimate
        total_lines = sum(1 for line in text.splitlines() if line.strip())
        return CSVPreview(
            headers=headers,
            rows=rows,
            detected_delimiter=delimiter,
            total_estimated_rows=max(total_lines - 1, 0),
        )
