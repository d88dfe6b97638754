"""Passage chunking configuration.

Passages are the unit of embedding. Every passage, header included, must fit
within CHUNK_TOKEN_BUDGET tokens of the configured tokenizer encoding.
"""

# =============================================================================
# Token Budget
# =============================================================================
# Hard ceiling per passage. MIN_SLICE_TOKENS is the smallest body slice the
# chunker will emit, so a huge import header can never stall progress.

CHUNK_TOKEN_BUDGET = 1024
MIN_SLICE_TOKENS = 64

# cl100k_base matches the OpenAI embedding models' tokenizer.

TOKENIZER_ENCODING = "cl100k_base"

# =============================================================================
# Passage Labels
# =============================================================================

SOURCE_TYPE_DOCUMENT = "document"
SOURCE_TYPE_CODE = "code"

OVERVIEW_TITLE = "Overview"
