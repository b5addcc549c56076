"""Batch reconciliation services."""

from royalty_batch.services.airplay_annotator import annotate_airplay
from royalty_batch.services.reconciliation_engine import ReconciliationEngine
from royalty_batch.services.worker_pool import BatchHandle, BatchWorkerPool

__all__ = ["BatchHandle", "BatchWorkerPool", "ReconciliationEngine", "annotate_airplay"]
