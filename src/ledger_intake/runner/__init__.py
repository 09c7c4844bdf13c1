"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- process: Upload, analyze and optionally record documents
- match: Suggest supplier invoices for a boleto
- link: Link a boleto to a supplier invoice
- status: Record counts
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
