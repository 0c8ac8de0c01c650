"""CSV rendering for stock exports (semicolon separated, UTF-8 BOM for spreadsheets)."""

import csv
from datetime import datetime
from decimal import Decimal
from io import StringIO
from typing import Iterable, List, Sequence

from services.units import format_qty3

BOM = "\ufeff"

CURRENT_STOCK_HEADER = ["produto", "categoria", "unidade", "saldo"]
MOVEMENTS_HEADER = [
    "data",
    "produto",
    "unidade",
    "quantidade",
    "direcao",
    "tipo",
    "motivo",
    "origem",
    "correlacao",
]


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format_qty3(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def render_csv(header: Sequence[str], rows: Iterable[Sequence]) -> str:
    buf = StringIO()
    buf.write(BOM)
    writer = csv.writer(buf, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return buf.getvalue()


def current_stock_csv(rows: List[dict]) -> str:
    return render_csv(
        CURRENT_STOCK_HEADER,
        ([r.get("product_name"), r.get("category"), r["unit_label"], r["qty_balance"]] for r in rows),
    )


def movements_csv(rows: List[dict]) -> str:
    return render_csv(
        MOVEMENTS_HEADER,
        (
            [
                r.get("created_at"),
                r.get("product_name"),
                r["unit_label"],
                Decimal(r["qty_delta"]),
                r["direction"],
                r.get("movement_type"),
                r.get("reason"),
                r.get("source"),
                r.get("correlation_id"),
            ]
            for r in rows
        ),
    )


def export_filename(prefix: str) -> str:
    return f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
