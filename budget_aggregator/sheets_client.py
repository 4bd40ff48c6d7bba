#!/usr/bin/env python3
"""
Google Sheets gateway for the budget aggregator.

Wraps the Sheets v4 values API with the handful of operations the pipeline
needs: resolve a sheet URL, find the first tab, read, clear and write a range.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

import google_auth_httplib2
import httplib2
from googleapiclient.errors import HttpError

from budget_aggregator.config import READ_RANGE, CLEAR_RANGE
from budget_aggregator.exceptions import AccessError, NotFoundError, AggregatorError
from budget_aggregator.utils import a1_range, get_credentials, get_sheets_service

logger = logging.getLogger(__name__)

# Pulls the ID out of https://docs.google.com/spreadsheets/d/<id>/edit#gid=0
SHEET_ID_PATTERN = re.compile(r'/d/(.*?)(?:/|$)')


@dataclass
class SheetData:
    """Rows read from the first tab of one spreadsheet."""
    reference: str
    spreadsheet_id: str
    sheet_name: str
    rows: List[List[str]]


def resolve_id(reference: str) -> str:
    """Extract the spreadsheet ID from a URL, or return the input as the ID."""
    reference = reference.strip()
    match = SHEET_ID_PATTERN.search(reference)
    if match and match.group(1):
        return match.group(1)
    return reference


def _translate_http_error(e: HttpError, spreadsheet_id: str, action: str) -> AggregatorError:
    """Map a Sheets API HttpError to AccessError / NotFoundError."""
    status = e.resp.status
    details = {'spreadsheet_id': spreadsheet_id, 'status': status}
    if status in (400, 404):
        return NotFoundError(
            f"Cannot {action} spreadsheet (ID: {spreadsheet_id}). "
            f"Sheet not found. Check that the URL or ID is correct.",
            details=details
        )
    if status in (401, 403):
        return AccessError(
            f"Cannot {action} spreadsheet (ID: {spreadsheet_id}). "
            f"Permission denied. Share the sheet with your service account or OAuth user.",
            details=details
        )
    return AccessError(
        f"Cannot {action} spreadsheet (ID: {spreadsheet_id}). Error: {e}",
        details=details
    )


class SheetsGateway:
    """Async gateway for all Google Sheets operations."""

    def __init__(self, service=None, creds=None):
        """
        Args:
            service: A Sheets v4 service (googleapiclient). Built from creds if None.
            creds: Google credentials used to authorize each request.
                Taken from the service when it was built with credentials.
        """
        if service is None:
            if creds is None:
                creds = get_credentials()
            service = get_sheets_service(creds)
        elif creds is None:
            creds = getattr(getattr(service, '_http', None), 'credentials', None)
        self._service = service
        self._creds = creds

    resolve_id = staticmethod(resolve_id)

    def _new_http(self) -> Optional[Any]:
        # httplib2.Http is not thread-safe; every threaded call gets its own transport
        if self._creds is None:
            return None
        return google_auth_httplib2.AuthorizedHttp(self._creds, http=httplib2.Http())

    def _execute_sync(self, request):
        http = self._new_http()
        if http is None:
            return request.execute()
        return request.execute(http=http)

    async def _execute(self, request, spreadsheet_id: str, action: str):
        try:
            return await asyncio.to_thread(self._execute_sync, request)
        except HttpError as e:
            raise _translate_http_error(e, spreadsheet_id, action) from e

    async def get_primary_sheet_name(self, spreadsheet_id: str) -> str:
        """Return the title of the first tab in the spreadsheet."""
        request = self._service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields='sheets.properties.title'
        )
        result = await self._execute(request, spreadsheet_id, 'open')

        sheets = result.get('sheets', [])
        if not sheets:
            raise NotFoundError(
                f"Spreadsheet (ID: {spreadsheet_id}) has no sheets.",
                details={'spreadsheet_id': spreadsheet_id}
            )
        return sheets[0]['properties']['title']

    async def read_range(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        cell_range: str = READ_RANGE
    ) -> List[List[str]]:
        """
        Read a rectangular range.

        Returns:
            Rows of string cells (trailing empty cells are omitted by the API),
            or [] when the range is empty.
        """
        request = self._service.spreadsheets().values().get(
            spreadsheetId=spreadsheet_id,
            range=a1_range(sheet_name, cell_range)
        )
        result = await self._execute(request, spreadsheet_id, 'read')

        values = result.get('values', [])
        return [[str(cell) for cell in row] for row in values]

    async def clear_range(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        cell_range: str = CLEAR_RANGE
    ):
        """Delete all values in the range. Formatting is left alone."""
        request = self._service.spreadsheets().values().clear(
            spreadsheetId=spreadsheet_id,
            range=a1_range(sheet_name, cell_range),
            body={}
        )
        await self._execute(request, spreadsheet_id, 'clear')
        logger.info(f"Cleared {a1_range(sheet_name, cell_range)} in {spreadsheet_id}")

    async def write_range(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        start_cell: str,
        table: List[List[Any]]
    ):
        """Write a table starting at start_cell. Cells outside the table are untouched."""
        request = self._service.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=a1_range(sheet_name, start_cell),
            valueInputOption='USER_ENTERED',
            body={'values': table}
        )
        await self._execute(request, spreadsheet_id, 'write')
        logger.info(f"Wrote {len(table)} rows to {a1_range(sheet_name, start_cell)} in {spreadsheet_id}")

    async def read_source(self, reference: str, cell_range: str = READ_RANGE) -> SheetData:
        """Resolve a reference, find its first tab and read it."""
        spreadsheet_id = self.resolve_id(reference)
        sheet_name = await self.get_primary_sheet_name(spreadsheet_id)
        logger.info(f"Reading from {reference}, sheet: {sheet_name}")
        rows = await self.read_range(spreadsheet_id, sheet_name, cell_range)
        logger.debug(f"Read {len(rows)} rows from {spreadsheet_id}")
        return SheetData(
            reference=reference,
            spreadsheet_id=spreadsheet_id,
            sheet_name=sheet_name,
            rows=rows,
        )
