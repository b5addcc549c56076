"""
royalty_batch -- Batch Reconciliation Engine.

Applies bulk payment, rejection, settlement, transfer and adjustment rows
to the ledger with per-row SAVEPOINT isolation, itemized rejection
reporting, checksum deduplication, and a worker pool running independent
batches concurrently.

Architecture:
    royalty_batch/ is a top-level package on top of royalty_kernel; the
    kernel only imports its models so create_tables() sees the batch
    tables.  BatchOrchestrator is the entry point.
"""
