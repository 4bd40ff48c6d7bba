#!/usr/bin/env python3
"""
MCP Server for budget aggregation.

Exposes one tool for Claude:
- aggregate_budgets: merge several budget sheets into one master sheet
"""

import json
import logging
import sys
from typing import Any, Dict, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from budget_aggregator.aggregator import AggregationPipeline
from budget_aggregator.config import (
    MCP_SERVER_NAME,
    MCP_SERVER_VERSION,
    LOG_LEVEL,
    validate_config,
)
from budget_aggregator.exceptions import AggregatorError
from budget_aggregator.llm_client import LLMClient
from budget_aggregator.sheets_client import SheetsGateway

logger = logging.getLogger(__name__)

TOOL_NAME = 'aggregate_budgets'

# Initialize MCP server
server = Server(MCP_SERVER_NAME)

# Built on first tool call, reused afterwards
_gateway = None
_llm = None


def get_gateway() -> SheetsGateway:
    """Get or create the Sheets gateway."""
    global _gateway
    if _gateway is None:
        _gateway = SheetsGateway()
    return _gateway


def get_llm() -> LLMClient:
    """Get or create the Claude client."""
    global _llm
    if _llm is None:
        _llm = LLMClient()
    return _llm


async def _confirm_from_tool_call(question: str) -> bool:
    # The assistant cannot answer prompts; calling the tool is the confirmation
    logger.warning(f"Auto-confirmed for tool call: {question}")
    return True


async def aggregate_budgets(
    arguments: Dict[str, Any],
    gateway: Optional[SheetsGateway] = None,
    llm: Optional[LLMClient] = None
) -> Dict[str, Any]:
    """
    Run the aggregation for a tool call.

    Returns a JSON-serializable dict: the run summary on success,
    {'success': False, 'error': ...} on failure.
    """
    source_urls = arguments.get('source_urls')
    master_url = arguments.get('master_url')

    if not isinstance(source_urls, list) or not all(isinstance(u, str) for u in source_urls):
        return {'success': False, 'error': 'source_urls must be a list of strings'}
    if not isinstance(master_url, str) or not master_url.strip():
        return {'success': False, 'error': 'master_url must be a non-empty string'}

    try:
        pipeline = AggregationPipeline(
            gateway=gateway or get_gateway(),
            llm=llm or get_llm(),
            confirm=_confirm_from_tool_call,
        )
        result = await pipeline.run(source_urls, master_url)
        return result.to_dict()
    except AggregatorError as e:
        logger.error(f"Aggregation failed: {e.message}")
        return {'success': False, 'error': e.message, 'details': e.details}
    except Exception as e:
        logger.exception("Aggregation failed")
        return {'success': False, 'error': str(e)}


# ============================================================================
# MCP TOOL DEFINITIONS
# ============================================================================

@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return list of available tools."""
    return [
        Tool(
            name=TOOL_NAME,
            description="""Merge data from multiple budget sheets into one master sheet.

For each source sheet, finds the category and amount columns (using Claude when
available), merges similar category names across all sources, sums amounts per
category and writes a Category/Amount table to the master sheet's first tab.

Existing data on the master sheet is replaced; the result reports how many
existing data rows were overwritten (overwrote_rows) so the user can be told.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "source_urls": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "List of URLs for the source budget sheets"
                    },
                    "master_url": {
                        "type": "string",
                        "description": "URL of the master sheet to write to"
                    }
                },
                "required": ["source_urls", "master_url"],
                "additionalProperties": False
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    if name != TOOL_NAME:
        return [TextContent(
            type="text",
            text=json.dumps({'success': False, 'error': f'Unknown tool: {name}'})
        )]

    output = await aggregate_budgets(arguments or {})
    return [TextContent(
        type="text",
        text=json.dumps(output, indent=2, default=str)
    )]


# ============================================================================
# MAIN
# ============================================================================

async def main():
    """Run the MCP server."""
    # stdout is the MCP channel, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )
    validate_config()
    logger.info(f"Starting {MCP_SERVER_NAME} v{MCP_SERVER_VERSION}")

    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )


def run():
    """Console script entry point."""
    import asyncio
    asyncio.run(main())


if __name__ == '__main__':
    run()
