"""Configuration constants.

Re-exports all config for convenient importing:
    from wikicube.constants import CHUNK_TOKEN_BUDGET, MAX_TOPICS
"""

from wikicube.constants.pipeline import *  # noqa: F403
from wikicube.constants.chunking import *  # noqa: F403
from wikicube.constants.embedding import *  # noqa: F403
from wikicube.constants.retrieval import *  # noqa: F403
from wikicube.constants.llm import *  # noqa: F403
