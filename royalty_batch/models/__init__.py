"""ORM models for batch ingestion."""

from royalty_batch.models.batch import (
    BatchModel,
    BatchRejectedRowModel,
    register_batch_listeners,
)

__all__ = ["BatchModel", "BatchRejectedRowModel", "register_batch_listeners"]
