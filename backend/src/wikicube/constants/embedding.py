"""Embedding service configuration.

Texts are grouped into fixed-size batches and each batch is one call to the
embedding provider. Batches are retried independently.
"""

# =============================================================================
# Model
# =============================================================================

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536

# =============================================================================
# Batching
# =============================================================================
# Texts per provider call, and how many calls are in flight at once.

EMBEDDING_BATCH_SIZE = 7
EMBEDDING_CONCURRENCY = 5

# =============================================================================
# Retry Policy
# =============================================================================
# Attempts per batch (including the first) and the exponential backoff window.
# A batch that exhausts its attempts is dropped, not raised.

EMBEDDING_MAX_ATTEMPTS = 3
EMBEDDING_BACKOFF_MIN_SECONDS = 0.5
EMBEDDING_BACKOFF_MAX_SECONDS = 8.0

# Rows per insert when persisting embedded passages.

PASSAGE_INSERT_BATCH_SIZE = 50
