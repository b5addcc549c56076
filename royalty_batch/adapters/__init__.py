"""Upload adapters for batch rows (file I/O only, no DB)."""

from royalty_batch.adapters.tsv_adapter import TsvBatchAdapter, decode_row

__all__ = ["TsvBatchAdapter", "decode_row"]
