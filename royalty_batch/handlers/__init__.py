"""Row handlers, one per batch kind."""

from royalty_batch.handlers.adjustment import AdjustmentHandler
from royalty_batch.handlers.base import HandlerRegistry, RowContext, RowHandler
from royalty_batch.handlers.payment import PaymentHandler
from royalty_batch.handlers.rejection import RejectionHandler
from royalty_batch.handlers.settlement import SettlementHandler
from royalty_batch.handlers.transfer import TransferHandler


def default_handler_registry() -> HandlerRegistry:
    """A registry holding the handler of every batch kind."""
    registry = HandlerRegistry()
    registry.register(PaymentHandler())
    registry.register(RejectionHandler())
    registry.register(SettlementHandler())
    registry.register(TransferHandler())
    registry.register(AdjustmentHandler())
    return registry


__all__ = [
    "AdjustmentHandler",
    "HandlerRegistry",
    "PaymentHandler",
    "RejectionHandler",
    "RowContext",
    "RowHandler",
    "SettlementHandler",
    "TransferHandler",
    "default_handler_registry",
]
