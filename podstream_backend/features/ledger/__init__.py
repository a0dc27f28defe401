from .service import CounterLedger

__all__ = ["CounterLedger"]
