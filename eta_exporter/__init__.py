"""Resilient invoice-record extraction for the ETA e-invoicing portal."""

from typing import Any

__all__ = ["InvoiceCommandHandler"]


def __getattr__(name: str) -> Any:
    if name == "InvoiceCommandHandler":
        from eta_exporter.invoice_sync.commands import InvoiceCommandHandler as _handler

        return _handler
    raise AttributeError(name)
