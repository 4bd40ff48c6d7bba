"""
Prompt templates for Claude API calls.
"""

import json

from budget_aggregator.config import PING_TOKEN

SYSTEM_PROMPT = """You are a data assistant for a budget consolidation tool.

You read spreadsheet headers and budget category labels and answer with
machine-readable JSON only. Never add explanations or prose.
"""

PING_PROMPT = f"Reply with the single word {PING_TOKEN} and nothing else."


def build_column_mapping_prompt(headers: list) -> str:
    """Ask for the category and amount column indices of a header row."""
    return (
        f"Identify the column indices for category and amount in the headers: {json.dumps(headers)}. "
        "Category is the one with budget categories like Equipment, Food, Hosting. "
        "Amount is the numerical cost or spending, often called Cost, Amount, or Price. "
        'Return ONLY JSON {"category": index, "amount": index}, where indices are 0-based. '
        "If not found, use null."
    )


def build_normalization_prompt(categories: list) -> str:
    """Ask for a mapping from every raw category to a consolidated name."""
    return (
        "Merge these budget categories into standardized, consolidated categories. "
        'Group similar ones (e.g., "Camera Gear" and "Photography Supplies" into "Photography"). '
        "Every input category must appear exactly once as a key. "
        "Return ONLY a JSON object where keys are original categories and values are "
        f"the standardized category names: {json.dumps(categories)}"
    )
