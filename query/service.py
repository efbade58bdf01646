"""
Entry point for natural-language questions over loaded activity records.
"""

import logging
from datetime import date
from typing import Callable, Optional, Sequence

from models import ActivityRecord
from settings import display_names, load_organizations
from .executor import QueryExecutor, QueryResult
from .parser import IntentParser
from .vocabulary import DEFAULT_VOCABULARY, Vocabulary

logger = logging.getLogger(__name__)


class QueryService:
    """
    Parses and answers queries. process() always returns a QueryResult, never raises.
    """

    def __init__(
        self,
        records: Sequence[ActivityRecord],
        organizations=None,
        vocabulary: Optional[Vocabulary] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.records = list(records)
        self.organizations = tuple(organizations) if organizations is not None else load_organizations()
        self.parser = IntentParser(
            [r.login for r in self.records],
            self.organizations,
            vocabulary=vocabulary or DEFAULT_VOCABULARY,
            clock=clock,
        )
        self.executor = QueryExecutor(self.records, display_names(self.parser.organizations))

    def process(self, text: str) -> QueryResult:
        try:
            if text is None or not str(text).strip():
                raise ValueError('query is empty')
            parsed = self.parser.parse(text)
            logger.debug("Parsed query %r: %r", text, parsed)
            return self.executor.execute(parsed, text)
        except Exception as ex:
            logger.warning("Error while processing query %r: %s", text, ex)
            return QueryResult('data', None, f"Error while processing query: {ex}", text or '')
