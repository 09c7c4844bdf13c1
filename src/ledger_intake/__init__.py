"""
Financial documents → Recognition → Human confirmation → Accounting records

A deterministic, testable intake pipeline that turns uploaded invoices,
boletos, receipts and tax guides into payables and revenue invoices with
duplicate protection, boleto-to-invoice matching and an audit trail for
every human correction.
"""

__version__ = "0.1.0"
