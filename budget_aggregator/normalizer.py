"""
Category normalization: merge near-duplicate labels into canonical names.
"""

import json
import logging
from typing import Dict, Iterable

from budget_aggregator.exceptions import NormalizationError
from budget_aggregator.llm_client import LLMClient, strip_code_fences
from budget_aggregator.prompts import build_normalization_prompt

logger = logging.getLogger(__name__)


class IdentityNormalizer:
    """Every category maps to itself."""

    async def normalize(self, categories: Iterable[str]) -> Dict[str, str]:
        return {c: c for c in categories}


class ModelCategoryNormalizer:
    """
    One Claude call over the union of all categories from every source.

    Labels Claude leaves out (or maps to a blank) keep their own spelling.
    """

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def normalize(self, categories: Iterable[str]) -> Dict[str, str]:
        category_list = sorted(set(categories))
        if not category_list:
            return {}

        response = await self.llm.complete(build_normalization_prompt(category_list))
        text = strip_code_fences(response)

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse category mapping: {e}")
            logger.error(f"Response: {response[:500]}")
            raise NormalizationError(
                "Claude returned an invalid category mapping",
                details={'response': response[:500]}
            ) from e

        if not isinstance(parsed, dict):
            raise NormalizationError(
                f"Category mapping is not a JSON object: {text[:200]}",
                details={'response': response[:500]}
            )

        mapping = {}
        for category in category_list:
            canonical = parsed.get(category)
            if isinstance(canonical, str) and canonical.strip():
                mapping[category] = canonical.strip()
            else:
                mapping[category] = category

        merged = len(category_list) - len(set(mapping.values()))
        logger.info(f"Normalized {len(category_list)} categories into {len(set(mapping.values()))} ({merged} merged)")
        return mapping
