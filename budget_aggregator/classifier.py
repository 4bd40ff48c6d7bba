#!/usr/bin/env python3
"""
Column classification: which header holds the category and which the amount.

Two strategies share the same async interface:
1. Heuristic keyword scan (deterministic, no API calls)
2. Claude (one call per source sheet)
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from budget_aggregator.config import CATEGORY_KEYWORDS, AMOUNT_KEYWORDS, CATEGORY_FALLBACK_WORDS
from budget_aggregator.exceptions import ClassificationError
from budget_aggregator.llm_client import LLMClient, strip_code_fences
from budget_aggregator.prompts import build_column_mapping_prompt

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"[a-z]+")


@dataclass(frozen=True)
class ColumnMapping:
    """Zero-based column indices. None means the column was not found."""
    category: Optional[int] = None
    amount: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.category is not None and self.amount is not None


class HeuristicColumnClassifier:
    """
    Keyword match on header names. The last matching header wins.

    A header that is the word "type" (e.g. "Type", "Item Type") is only used
    for the category role when no header contains "category".
    """

    def __init__(
        self,
        category_keywords=CATEGORY_KEYWORDS,
        amount_keywords=AMOUNT_KEYWORDS,
        category_fallback_words=CATEGORY_FALLBACK_WORDS
    ):
        self.category_keywords = tuple(k.lower() for k in category_keywords)
        self.amount_keywords = tuple(k.lower() for k in amount_keywords)
        self.category_fallback_words = frozenset(w.lower() for w in category_fallback_words)

    async def classify(self, headers: List[str]) -> ColumnMapping:
        category = None
        fallback_category = None
        amount = None

        for i, header in enumerate(headers):
            header_lower = str(header).lower()
            if any(k in header_lower for k in self.category_keywords):
                category = i
            elif self.category_fallback_words.intersection(WORD_PATTERN.findall(header_lower)):
                fallback_category = i
            if any(k in header_lower for k in self.amount_keywords):
                amount = i

        if category is None:
            category = fallback_category

        return ColumnMapping(category=category, amount=amount)


class ModelColumnClassifier:
    """Asks Claude for the column indices."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def classify(self, headers: List[str]) -> ColumnMapping:
        response = await self.llm.complete(build_column_mapping_prompt(list(headers)))
        return self._parse_response(response, headers)

    def _parse_response(self, response: str, headers: List[str]) -> ColumnMapping:
        """
        Parse {"category": idx|null, "amount": idx|null}.

        Raises ClassificationError on anything that is not that shape.
        Indices outside the header row are treated as not found.
        """
        text = strip_code_fences(response)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse column mapping: {e}")
            logger.error(f"Response: {response[:500]}")
            raise ClassificationError(
                f"Claude returned an invalid column mapping for headers {headers}",
                details={'response': response[:500]}
            ) from e

        if not isinstance(parsed, dict):
            raise ClassificationError(
                f"Column mapping is not a JSON object: {text[:200]}",
                details={'response': response[:500]}
            )

        indices = {}
        for role in ('category', 'amount'):
            value = parsed.get(role)
            if value is None:
                indices[role] = None
                continue
            # bool is an int subclass; true/false is not an index
            if isinstance(value, bool) or not isinstance(value, int):
                raise ClassificationError(
                    f"Column mapping has a non-integer {role} index: {value!r}",
                    details={'response': response[:500]}
                )
            if not 0 <= value < len(headers):
                logger.warning(f"{role} index {value} is outside headers {headers}, ignoring")
                indices[role] = None
                continue
            indices[role] = value

        return ColumnMapping(category=indices['category'], amount=indices['amount'])
