"""Search and chat retrieval configuration.

Both surfaces rank stored passages by cosine similarity to the query vector
and keep only those strictly above the threshold.
"""

# =============================================================================
# Similarity Search
# =============================================================================

SEARCH_MATCH_COUNT = 10
CHAT_MATCH_COUNT = 8
SIMILARITY_THRESHOLD = 0.5

# =============================================================================
# Search Results
# =============================================================================
# Semantic hits are truncated for display. Fuzzy title matches use difflib's
# ratio and are listed ahead of semantic hits.

SNIPPET_MAX_LENGTH = 300
FUZZY_TITLE_THRESHOLD = 0.6
FUZZY_TITLE_LIMIT = 4

# =============================================================================
# Chat Context
# =============================================================================
# Character slices taken from the overview and from each topic body when
# building fallback context, and the overall token budget for the block.

OVERVIEW_CONTEXT_CHARS = 2000
FALLBACK_BODY_CHARS = 500
MAX_CONTEXT_TOKENS = 6000

# Previous chat turns replayed to the model.

CHAT_HISTORY_LIMIT = 20

# Characters of a session's first question shown when listing chat sessions.

CHAT_PREVIEW_CHARS = 80
