"""Shared fakes for the Sheets API, the gateway and Claude.

Nothing here touches the network: tests inject these objects wherever the
code accepts a gateway, an LLM client or a googleapiclient service.
"""

from types import SimpleNamespace

import pytest

from budget_aggregator.sheets_client import SheetData, resolve_id


class FakeGateway:
    """In-memory stand-in for SheetsGateway.

    ``sheets`` maps spreadsheet id -> (sheet name, rows).
    """

    def __init__(self, sheets):
        self.sheets = {k: (name, [list(r) for r in rows]) for k, (name, rows) in sheets.items()}
        self.calls = []

    resolve_id = staticmethod(resolve_id)

    def _get(self, spreadsheet_id):
        from budget_aggregator.exceptions import NotFoundError

        if spreadsheet_id not in self.sheets:
            raise NotFoundError(f"Sheet not found: {spreadsheet_id}")
        return self.sheets[spreadsheet_id]

    async def get_primary_sheet_name(self, spreadsheet_id):
        self.calls.append(('get_primary_sheet_name', spreadsheet_id))
        return self._get(spreadsheet_id)[0]

    async def read_range(self, spreadsheet_id, sheet_name, cell_range='A1:Z100'):
        self.calls.append(('read_range', spreadsheet_id))
        return [list(r) for r in self._get(spreadsheet_id)[1]]

    async def clear_range(self, spreadsheet_id, sheet_name, cell_range='A:Z'):
        self.calls.append(('clear_range', spreadsheet_id))
        name, _ = self._get(spreadsheet_id)
        self.sheets[spreadsheet_id] = (name, [])

    async def write_range(self, spreadsheet_id, sheet_name, start_cell, table):
        self.calls.append(('write_range', spreadsheet_id))
        name, rows = self._get(spreadsheet_id)
        # Overwrite the footprint, keep anything below it
        merged = [list(r) for r in table] + rows[len(table):]
        self.sheets[spreadsheet_id] = (name, merged)

    async def read_source(self, reference, cell_range='A1:Z100'):
        spreadsheet_id = self.resolve_id(reference)
        sheet_name = await self.get_primary_sheet_name(spreadsheet_id)
        rows = await self.read_range(spreadsheet_id, sheet_name, cell_range)
        return SheetData(reference=reference, spreadsheet_id=spreadsheet_id, sheet_name=sheet_name, rows=rows)

    def rows(self, spreadsheet_id):
        return self.sheets[spreadsheet_id][1]

    def wrote(self):
        return any(call[0] in ('clear_range', 'write_range') for call in self.calls)


class FakeLLM:
    """Stand-in for LLMClient returning scripted replies in order."""

    def __init__(self, replies=(), alive=True):
        self.replies = list(replies)
        self.alive = alive
        self.prompts = []

    async def ping(self):
        return self.alive

    async def complete(self, prompt):
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError(f"Unexpected Claude call: {prompt[:80]}")
        return self.replies.pop(0)


class FakeAnthropic:
    """Minimal AsyncAnthropic shape: ``messages.create`` returning a text block."""

    def __init__(self, text='', error=None):
        self.calls = []
        outer = self

        class _Messages:
            async def create(self, **kwargs):
                outer.calls.append(kwargs)
                if error is not None:
                    raise error
                return SimpleNamespace(
                    content=[SimpleNamespace(type='text', text=text)],
                    usage=SimpleNamespace(input_tokens=10, output_tokens=3),
                )

        self.messages = _Messages()


SOURCE_A = 'https://docs.google.com/spreadsheets/d/sheetA/edit#gid=0'
SOURCE_B = 'https://docs.google.com/spreadsheets/d/sheetB/edit'
MASTER = 'https://docs.google.com/spreadsheets/d/master/edit'


@pytest.fixture
def two_sources():
    return {
        'sheetA': ('Club A', [
            ['Item', 'Category', 'Cost'],
            ['Tape', 'Equipment', '10'],
            ['Cups', 'Food', '5.50'],
        ]),
        'sheetB': ('Club B', [
            ['Desc', 'Type', 'Price'],
            ['Mic', 'Audio Gear', '20'],
        ]),
        'master': ('Master', []),
    }


@pytest.fixture
def gateway(two_sources):
    return FakeGateway(two_sources)
