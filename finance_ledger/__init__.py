"""
Finance Ledger

Collision-free document numbering and an exactly-once balance ledger for
receipts, statements of payment, invoices and payment vouchers, using
Decimal amounts, row-locked units of work and a hash-chained audit trail.
"""

__version__ = "1.0.0"
