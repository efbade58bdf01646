"""
Query package: keyword intent parsing and execution over ActivityRecord collections.
"""

from .executor import QueryExecutor, QueryResult
from .parser import IntentParser, ParsedQuery, QueryEntities, QueryFilters
from .service import QueryService
from .vocabulary import DEFAULT_VOCABULARY, ENGLISH, JAPANESE, Vocabulary

__all__ = [
    "DEFAULT_VOCABULARY",
    "ENGLISH",
    "IntentParser",
    "JAPANESE",
    "ParsedQuery",
    "QueryEntities",
    "QueryExecutor",
    "QueryFilters",
    "QueryResult",
    "QueryService",
    "Vocabulary",
]
