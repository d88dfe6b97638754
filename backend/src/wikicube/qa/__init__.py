"""Search and chat over generated wikis."""

from wikicube.qa.chat import ChatService
from wikicube.qa.retrieval import (
    ChatContext,
    RetrievalAssembler,
    SearchResult,
    merge_search_results,
)

__all__ = [
    "ChatContext",
    "ChatService",
    "RetrievalAssembler",
    "SearchResult",
    "merge_search_results",
]
