"""
Tab-separated batch upload adapter.

Decodes the upload layout (header row; columns CUIT, MONTO, FECHA,
REFERENCIA, ISRC, PORCENTAJE, CUIT ORIGEN, CUIT DESTINO) into the typed row
mappings the handlers read.  Uses csv.DictReader with a tab delimiter and
strips a UTF-8 BOM.  Streams rows.

Amounts accept ``1234.56`` and the local ``1.234,56``; dates are
``dd/MM/yyyy``.  A cell that does not decode is passed through as the raw
string so the engine rejects that row, not the whole upload.  Blank cells
are omitted.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable, Iterator
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

COLUMN_FIELDS = {
    "CUIT": "cuit",
    "MONTO": "amount",
    "FECHA": "date",
    "REFERENCIA": "reference",
    "ISRC": "isrc",
    "PORCENTAJE": "percentage",
    "CUIT ORIGEN": "origin_cuit",
    "CUIT DESTINO": "destination_cuit",
}

DATE_FORMAT = "%d/%m/%Y"

_LOCAL_NUMBER = re.compile(r"^-?\d{1,3}(\.\d{3})*(,\d+)?$")
_PLAIN_NUMBER = re.compile(r"^-?\d+([.,]\d+)?$")


def _decode_decimal(raw: str) -> Decimal | str:
    text = raw.strip().replace(" ", "")
    if _LOCAL_NUMBER.match(text):
        normalized = text.replace(".", "").replace(",", ".")
    elif _PLAIN_NUMBER.match(text):
        normalized = text.replace(",", ".")
    else:
        return raw
    try:
        return Decimal(normalized)
    except InvalidOperation:
        return raw


def _decode_date(raw: str) -> date | str:
    try:
        return datetime.strptime(raw.strip(), DATE_FORMAT).date()
    except ValueError:
        return raw


_DECODERS = {
    "amount": _decode_decimal,
    "percentage": _decode_decimal,
    "date": _decode_date,
}


def decode_row(record: dict[str, Any]) -> dict[str, Any]:
    """Map one raw TSV record (header -> cell) to a typed row."""
    row: dict[str, Any] = {}
    for column, cell in record.items():
        if column is None or cell is None:
            continue
        name = COLUMN_FIELDS.get(column.strip().upper())
        if name is None:
            continue
        if not cell.strip():
            continue
        decoder = _DECODERS.get(name)
        row[name] = decoder(cell) if decoder else cell.strip()
    return row


class TsvBatchAdapter:
    """Read tab-separated uploads as one typed row per line."""

    def read(self, source_path: Path, encoding: str = "utf-8") -> Iterator[dict[str, Any]]:
        if encoding.lower() == "utf-8":
            encoding = "utf-8-sig"  # Strip BOM if present
        with Path(source_path).open("r", encoding=encoding, newline="") as f:
            yield from self.parse_lines(f)

    def read_text(self, text: str) -> list[dict[str, Any]]:
        return list(self.parse_lines(io.StringIO(text.lstrip("\ufeff"), newline="")))

    def parse_lines(self, lines: Iterable[str]) -> Iterator[dict[str, Any]]:
        reader = csv.DictReader(lines, delimiter="\t")
        for record in reader:
            row = decode_row(record)
            if row:
                yield row
