"""LLM client configuration.

Defaults used when settings cannot be loaded.
"""

# =============================================================================
# Generation Defaults
# =============================================================================

MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.7
JSON_TEMPERATURE = 0.3
CHAT_TEMPERATURE = 0.4
