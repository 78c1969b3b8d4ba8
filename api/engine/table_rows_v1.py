from __future__ import annotations

import csv
import io
from typing import Any, Dict, List, Sequence


TABLE_ROWS_VERSION = "table_rows_v1"

_BOM = "\ufeff"
_QUOTE = '"'


class TableFormatError(ValueError):
    code = "TABLE_FORMAT_INVALID"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Cost table could not be split into rows: {detail}")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.detail,
        }


def sniff_delimiter(text: str) -> str:
    first = ""
    for line in text.replace("\r", "").split("\n"):
        if line.strip() != "":
            first = line
            break

    if ";" in first and "," not in first:
        return ";"
    if "\t" in first:
        return "\t"
    return ","


def _clean_cell(cell: str) -> str:
    token = cell.strip()
    if token.startswith(_BOM):
        token = token[len(_BOM):]
    return token


def _split_line(line: str, delimiter: str) -> List[str]:
    row: List[str] = []
    cell: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == _QUOTE:
            if in_quotes and i + 1 < len(line) and line[i + 1] == _QUOTE:
                cell.append(_QUOTE)
                i += 2
                continue
            in_quotes = not in_quotes
            i += 1
            continue
        if ch == delimiter and not in_quotes:
            row.append(_clean_cell("".join(cell)))
            cell = []
            i += 1
            continue
        cell.append(ch)
        i += 1

    row.append(_clean_cell("".join(cell)))
    return row


def split_table_rows(text: Any) -> List[List[str]]:
    """Split spreadsheet text into trimmed cells, one row per physical line.

    Quoted fields may contain the delimiter and ``""`` escapes but never a
    newline. Empty lines are kept as empty rows so row numbers line up with
    what the user sees in their editor.
    """

    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TableFormatError("input is not valid UTF-8 text") from exc
    if not isinstance(text, str):
        raise TableFormatError(f"expected text, got {type(text).__name__}")

    data = text.replace("\r", "")
    delimiter = sniff_delimiter(data)

    rows: List[List[str]] = []
    for line in data.split("\n"):
        if line == "":
            rows.append([])
            continue
        rows.append(_split_line(line, delimiter))
    return rows


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_table_rows(rows: Sequence[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    for row in rows:
        writer.writerow([_cell_text(value) for value in row])
    return buffer.getvalue().rstrip("\n")
