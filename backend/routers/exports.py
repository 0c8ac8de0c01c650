from datetime import date
from io import StringIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from core.auth import current_membership
from services.csv_export import current_stock_csv, export_filename, movements_csv
from services.stock import list_current_stock
from services.store import SqlStockStore, get_stock_store

router = APIRouter()


def _csv_response(content: str, prefix: str) -> StreamingResponse:
    return StreamingResponse(
        StringIO(content),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(prefix)}"'},
    )


@router.get("/current-stock.csv")
async def export_current_stock(
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    rows = await list_current_stock(store, membership["location_id"])
    return _csv_response(current_stock_csv(rows), "estoque_atual")


@router.get("/movements.csv")
async def export_movements(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    membership: dict = Depends(current_membership),
    store: SqlStockStore = Depends(get_stock_store),
):
    rows = await store.list_movements(membership["location_id"], date_from=date_from, date_to=date_to)
    return _csv_response(movements_csv(rows), "movimentacoes")
