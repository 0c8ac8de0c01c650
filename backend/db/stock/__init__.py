"""
Stock ledger (one balance per location/product/unit).

Models:
- StockMovement (append-only signed deltas, transfer legs carry a correlation id)
- StockBalance (running quantity per location/product/unit)
- StockTransfer (header for a two-location transfer, keyed by the correlation id)
"""
