#!/usr/bin/env python3
"""
Shared utilities for the budget aggregator.

Contains:
- Google API authentication (service account for servers, OAuth for local runs)
- A1 notation helpers
- Amount parsing
"""

import json
import logging
import math
import os
from typing import Any, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google.oauth2 import service_account
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from budget_aggregator.config import (
    GOOGLE_SERVICE_ACCOUNT_JSON,
    GOOGLE_SERVICE_ACCOUNT_FILE,
    CREDENTIALS_FILE,
    TOKEN_FILE,
)
from budget_aggregator.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Read/write on sheets only
SCOPES = ['https://www.googleapis.com/auth/spreadsheets']

# ============================================================================
# AUTHENTICATION
# ============================================================================

def get_credentials_service_account(
    service_account_json: str = GOOGLE_SERVICE_ACCOUNT_JSON,
    service_account_file: str = GOOGLE_SERVICE_ACCOUNT_FILE
) -> Any:
    """
    Get service account credentials from inline JSON or a key file.

    Returns None when neither is configured.
    """
    if service_account_json:
        try:
            info = json.loads(service_account_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON: {e}")
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

    if service_account_file:
        if not os.path.exists(service_account_file):
            raise ConfigurationError(
                f"Service account file '{service_account_file}' not found."
            )
        return service_account.Credentials.from_service_account_file(
            service_account_file, scopes=SCOPES
        )

    return None


def get_credentials_oauth(credentials_file: str = CREDENTIALS_FILE,
                          token_file: str = TOKEN_FILE) -> Credentials:
    """
    Get valid user credentials from storage or prompt for authorization.
    Used for local runs without a service account.
    """
    creds = None

    if os.path.exists(token_file):
        creds = Credentials.from_authorized_user_file(token_file, SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except Exception as e:
                logger.warning(f"Token refresh failed: {e}")
                logger.info("Will re-authenticate with OAuth flow...")
                if os.path.exists(token_file):
                    os.remove(token_file)
                creds = None

        if not creds:
            if not os.path.exists(credentials_file):
                raise ConfigurationError(
                    f"Credentials file '{credentials_file}' not found. "
                    "Set GOOGLE_SERVICE_ACCOUNT_JSON or download an OAuth client from Google Cloud Console."
                )
            flow = InstalledAppFlow.from_client_secrets_file(
                credentials_file, SCOPES
            )
            creds = flow.run_local_server(port=0)

        with open(token_file, 'w') as token:
            token.write(creds.to_json())

    return creds


def get_credentials() -> Any:
    """Service account first, OAuth token flow otherwise."""
    creds = get_credentials_service_account()
    if creds is not None:
        logger.info("Using service account credentials")
        return creds
    logger.info("No service account configured, using OAuth credentials")
    return get_credentials_oauth()


def get_sheets_service(creds=None):
    """Get authenticated Sheets service."""
    if creds is None:
        creds = get_credentials()
    return build('sheets', 'v4', credentials=creds, cache_discovery=False)

# ============================================================================
# A1 NOTATION
# ============================================================================

def a1_range(sheet_name: str, cell_range: str) -> str:
    """Build an A1 range, quoting the sheet name (e.g. 'My Tab'!A1:Z100)."""
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{cell_range}"

# ============================================================================
# PARSING UTILITIES
# ============================================================================

def parse_amount(amount_value) -> Optional[float]:
    """
    Parse a plain numeric cell.

    Returns None for blanks, non-numeric text, NaN and infinities.
    No currency symbols or thousands separators are accepted.
    """
    if amount_value is None:
        return None

    if isinstance(amount_value, (int, float)) and not isinstance(amount_value, bool):
        amount = float(amount_value)
    else:
        amount_str = str(amount_value).strip()
        # float() accepts "1_000"; a sheet cell with an underscore is text
        if not amount_str or '_' in amount_str:
            return None
        try:
            amount = float(amount_str)
        except ValueError:
            return None

    if not math.isfinite(amount):
        return None
    return amount
