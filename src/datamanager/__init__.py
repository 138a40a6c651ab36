"""
Datamanager: resumable batch maintenance jobs for rate-limited record stores.

Queries a remote record store, fans records out across a bounded worker
pool, applies a job's transformation to each record and keeps a checkpoint
log so that interrupted runs resume without reprocessing.
"""

__version__ = "1.0.0"
