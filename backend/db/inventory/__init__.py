"""
Stock ledger models.

Models:
- StockRecord (quantity of one item name in one warehouse)
- TransferReceipt (stored result of an idempotent transfer)
"""
