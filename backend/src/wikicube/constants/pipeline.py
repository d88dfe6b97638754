"""Analysis pipeline configuration.

These settings bound how much work a single analysis run does and how much
of it happens concurrently. Topic processing (file fetch plus page
generation) dominates run time, so its concurrency and file cap are the main
cost levers.
"""

# =============================================================================
# Topic Limits
# =============================================================================
# The model is asked to identify features of the repository. Identification
# results beyond MAX_TOPICS are dropped. The same cap bounds how many topic
# summaries are injected into chat context when semantic search finds nothing.

MAX_TOPICS = 15

# Candidate files fetched per topic before page generation. Larger topics are
# truncated to the first N paths the model listed.

MAX_FILES_PER_TOPIC = 30

# =============================================================================
# Concurrency
# =============================================================================
# Topics processed at once. Each topic holds up to MAX_FILES_PER_TOPIC files in
# memory and issues one generation call, so keep this modest.

TOPIC_CONCURRENCY = 5

# Raw file downloads in flight per fetch request.

FETCH_CONCURRENCY = 10

# Concurrency used by the batch runner when the caller does not specify one.

DEFAULT_BATCH_CONCURRENCY = 3

# =============================================================================
# Timeouts
# =============================================================================
# Wall-clock ceiling for a full run, and the ceiling for any single external
# call (content fetch, generation, embedding).

RUN_TIMEOUT_MINUTES = 15
CALL_TIMEOUT_SECONDS = 120.0

# =============================================================================
# Context Gathering
# =============================================================================
# Files read from the repository root and handed to topic identification
# alongside the filtered tree.

README_FILES = [
    "README.md",
    "README.rst",
    "README.txt",
    "README",
    "readme.md",
    "README.mdx",
    "docs/README.md",
    "docs/index.md",
]

MANIFEST_FILES = [
    "package.json",
    "pyproject.toml",
    "requirements.txt",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "Gemfile",
    "composer.json",
    "setup.py",
    "setup.cfg",
    "Package.swift",
    "CMakeLists.txt",
    "pubspec.yaml",
    "mix.exs",
    "build.gradle",
]

# Character limits applied to gathered context before it is sent to the model.

README_MAX_CHARS = 8000
MANIFEST_MAX_CHARS = 3000
TREE_MAX_PATHS = 2000
