"""
Claude API client for column mapping and category normalization.
"""

import logging
import re
from typing import Any, Dict, Optional

from anthropic import AsyncAnthropic

from budget_aggregator.config import CLAUDE_MODEL, MAX_TOKENS, PING_TOKEN
from budget_aggregator.prompts import SYSTEM_PROMPT, PING_PROMPT

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r'```(?:json)?', re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers Claude sometimes wraps JSON in."""
    return CODE_FENCE_PATTERN.sub('', text).strip()


class LLMClient:
    """Thin prompt-in, text-out wrapper around the Anthropic Messages API."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Any] = None, model: str = CLAUDE_MODEL):
        """
        Args:
            api_key: Anthropic API key. If None, uses ANTHROPIC_API_KEY env var.
            client: Pre-built AsyncAnthropic client (tests pass a fake here).
            model: Model name.
        """
        self.client = client if client is not None else AsyncAnthropic(api_key=api_key)
        self.model = model
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    async def complete(self, prompt: str) -> str:
        """Send one user message and return the text of the reply."""
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}]
        )

        usage = getattr(response, 'usage', None)
        if usage is not None:
            self.total_input_tokens += usage.input_tokens
            self.total_output_tokens += usage.output_tokens

        return ''.join(
            block.text for block in response.content
            if getattr(block, 'type', 'text') == 'text'
        )

    async def ping(self) -> bool:
        """
        Liveness check. True only if Claude answers with the ping token.

        Never raises: any failure means the caller should run without the model.
        """
        try:
            reply = await self.complete(PING_PROMPT)
        except Exception as e:
            logger.warning(f"Claude ping failed: {e}")
            return False

        if PING_TOKEN not in reply.upper():
            logger.warning(f"Claude ping returned unexpected reply: {reply[:100]!r}")
            return False

        logger.info(f"Claude ping OK ({self.model})")
        return True

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get token usage statistics."""
        return {
            'input_tokens': self.total_input_tokens,
            'output_tokens': self.total_output_tokens,
            'total_tokens': self.total_input_tokens + self.total_output_tokens,
        }
