#!/usr/bin/env python3
"""
Configuration for the Budget Aggregator.
"""

import os

from budget_aggregator.exceptions import ConfigurationError

# ============================================================================
# GOOGLE SHEETS CONFIGURATION
# ============================================================================

# Service account key, either inline JSON or a path to the key file
GOOGLE_SERVICE_ACCOUNT_JSON = os.environ.get('GOOGLE_SERVICE_ACCOUNT_JSON', '')
GOOGLE_SERVICE_ACCOUNT_FILE = os.environ.get('GOOGLE_SERVICE_ACCOUNT_FILE', '')

# OAuth fallback for local runs (same files the setup scripts create)
CREDENTIALS_FILE = os.environ.get('GOOGLE_CREDENTIALS_FILE', 'credentials.json')
TOKEN_FILE = os.environ.get('GOOGLE_TOKEN_FILE', 'token.json')

# Bounded read window for every source sheet and the destination check
READ_RANGE = os.environ.get('READ_RANGE', 'A1:Z100')

# Range wiped on the destination before writing the new table
CLEAR_RANGE = os.environ.get('CLEAR_RANGE', 'A:Z')

# Top-left cell of the destination table
WRITE_START_CELL = 'A1'

# ============================================================================
# OUTPUT FORMAT
# ============================================================================

HEADER_ROW = ['Category', 'Amount']

# ============================================================================
# COLUMN HEURISTICS
# ============================================================================

# Substrings (lowercase) that mark a header as the category / amount column
CATEGORY_KEYWORDS = ('category',)
AMOUNT_KEYWORDS = ('cost', 'amount', 'price')

# Whole words that mark the category column only when no header matches CATEGORY_KEYWORDS
CATEGORY_FALLBACK_WORDS = ('type',)

# ============================================================================
# CLAUDE API SETTINGS
# ============================================================================

CLAUDE_MODEL = os.environ.get('CLAUDE_MODEL', 'claude-sonnet-4-20250514')

# Mappings are small JSON objects
MAX_TOKENS = int(os.environ.get('MAX_TOKENS', '2048'))

# Liveness check: the model must answer with exactly this token
PING_TOKEN = 'PONG'

# ============================================================================
# MCP SERVER SETTINGS
# ============================================================================

MCP_SERVER_NAME = 'budget-aggregator'
MCP_SERVER_VERSION = '1.0.0'

# ============================================================================
# LOGGING
# ============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


def validate_config():
    """Validate required configuration. Raises ConfigurationError if credentials are missing."""
    missing = []
    if not os.environ.get('ANTHROPIC_API_KEY'):
        missing.append('ANTHROPIC_API_KEY')
    has_service_account = GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_SERVICE_ACCOUNT_FILE
    if not has_service_account and not (os.path.exists(TOKEN_FILE) or os.path.exists(CREDENTIALS_FILE)):
        missing.append('GOOGLE_SERVICE_ACCOUNT_JSON (or GOOGLE_SERVICE_ACCOUNT_FILE / credentials.json)')
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}\n"
            "Set them in your shell or in the MCP config env block.",
            details={'missing': missing}
        )
