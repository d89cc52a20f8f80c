"""Storage-layer building blocks: page frames, a paged disk buffer pool, simple transactions and date checks."""

__version__ = "0.1.0"
__all__ = ["frames", "buffer_pool", "trx", "dates"]