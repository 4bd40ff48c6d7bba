#!/usr/bin/env python3
"""
Budget aggregation pipeline.

Reads every source sheet in parallel, works out the category/amount columns of
each, merges similar category names across all sources with one Claude call,
sums amounts per canonical category and writes one table to the master sheet.

Stages:
    START -> READING -> CLASSIFYING -> EXTRACTING -> NORMALIZING -> SUMMING
          -> PRE_WRITE_CHECK -> WRITING -> DONE
ABORTED is reached when the user declines a confirmation, FAILED on any error.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from budget_aggregator.classifier import ColumnMapping, HeuristicColumnClassifier, ModelColumnClassifier
from budget_aggregator.config import HEADER_ROW, READ_RANGE, CLEAR_RANGE, WRITE_START_CELL
from budget_aggregator.exceptions import AggregatorError
from budget_aggregator.llm_client import LLMClient
from budget_aggregator.normalizer import IdentityNormalizer, ModelCategoryNormalizer
from budget_aggregator.sheets_client import SheetData, SheetsGateway
from budget_aggregator.utils import parse_amount

logger = logging.getLogger(__name__)

# Receives a question, returns True to go ahead. May be sync or async.
ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]


class PipelineStage(Enum):
    START = 'start'
    READING = 'reading'
    CLASSIFYING = 'classifying'
    EXTRACTING = 'extracting'
    NORMALIZING = 'normalizing'
    SUMMING = 'summing'
    PRE_WRITE_CHECK = 'pre_write_check'
    WRITING = 'writing'
    DONE = 'done'
    ABORTED = 'aborted'
    FAILED = 'failed'


@dataclass(frozen=True)
class ExpenseRecord:
    category: str
    amount: float


@dataclass
class AggregationResult:
    """Outcome of one pipeline run."""
    totals: Dict[str, float] = field(default_factory=dict)
    total: float = 0.0
    table: List[List[Any]] = field(default_factory=list)
    written: bool = False
    aborted: bool = False
    abort_reason: str = ''
    sources: int = 0
    records: int = 0
    skipped_rows: int = 0
    overwrote_rows: int = 0
    model_assisted: bool = False
    category_mapping: Dict[str, str] = field(default_factory=dict)
    destination_id: str = ''
    destination_sheet: str = ''

    @property
    def message(self) -> str:
        if self.written:
            return f"Master budget updated successfully! Total spending across all sources: {self.total}"
        if self.aborted:
            return f"Aborted ({self.abort_reason}); master sheet not changed. Total spending across all sources: {self.total}"
        return f"Dry run; master sheet not changed. Total spending across all sources: {self.total}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'message': self.message,
            'total': self.total,
            'totals': dict(sorted(self.totals.items())),
            'written': self.written,
            'aborted': self.aborted,
            'sources': self.sources,
            'records': self.records,
            'skipped_rows': self.skipped_rows,
            'overwrote_rows': self.overwrote_rows,
            'model_assisted': self.model_assisted,
            'destination_id': self.destination_id,
            'destination_sheet': self.destination_sheet,
        }


# ============================================================================
# PURE STEPS
# ============================================================================

def extract_records(rows: List[List[str]], mapping: ColumnMapping) -> Tuple[List[ExpenseRecord], int]:
    """
    Turn data rows (header excluded) into expense records.

    A row is skipped when either index is missing, the row is too short,
    the category is blank or the amount is not a finite number.

    Returns:
        (records, number of skipped rows)
    """
    if not mapping.complete:
        return [], len(rows)

    records = []
    skipped = 0
    needed = max(mapping.category, mapping.amount)

    for row in rows:
        if len(row) <= needed:
            skipped += 1
            continue

        category = str(row[mapping.category]).strip()
        amount = parse_amount(row[mapping.amount])
        if not category or amount is None:
            skipped += 1
            continue

        records.append(ExpenseRecord(category=category, amount=amount))

    return records, skipped


def sum_by_category(records: Iterable[ExpenseRecord], category_mapping: Dict[str, str]) -> Dict[str, float]:
    """Sum amounts per canonical category. Unmapped categories keep their own name."""
    totals = defaultdict(float)
    for record in records:
        canonical = category_mapping.get(record.category) or record.category
        totals[canonical] += record.amount
    return dict(totals)


def build_table(totals: Dict[str, float]) -> List[List[Any]]:
    """Header row plus one [category, amount] row per category, sorted by name."""
    return [list(HEADER_ROW)] + [[name, totals[name]] for name in sorted(totals)]


# ============================================================================
# PIPELINE
# ============================================================================

class AggregationPipeline:
    """
    Orchestrates one aggregation run.

    Strategies are picked per run: if Claude answers the ping, both columns
    and categories go through Claude; otherwise the keyword heuristic and the
    identity mapping are used (the latter only after confirmation).
    Explicitly passed classifier/normalizer objects are used as given.
    """

    def __init__(
        self,
        gateway: SheetsGateway,
        llm: Optional[LLMClient] = None,
        classifier=None,
        normalizer=None,
        confirm: Optional[ConfirmCallback] = None,
        dry_run: bool = False,
    ):
        """
        Args:
            gateway: Sheets gateway used for every read and write
            llm: Claude client; None forces heuristic mode
            classifier: Column classifier overriding the per-run choice
            normalizer: Category normalizer overriding the per-run choice
            confirm: Asked before writing unnormalized data or overwriting an
                existing master sheet. None declines every question.
            dry_run: Run everything except the clear/write
        """
        self.gateway = gateway
        self.llm = llm
        self.classifier = classifier
        self.normalizer = normalizer
        self.confirm = confirm
        self.dry_run = dry_run
        self.stage = PipelineStage.START

    def _set_stage(self, stage: PipelineStage):
        self.stage = stage
        logger.debug(f"Pipeline stage: {stage.value}")

    async def _ask(self, question: str) -> bool:
        if self.confirm is None:
            logger.info(f"No confirmation available, declining: {question}")
            return False
        answer = self.confirm(question)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def _select_strategies(self):
        """Returns (classifier, normalizer, model_assisted, needs_fallback_confirmation)."""
        if self.classifier is not None and self.normalizer is not None:
            return self.classifier, self.normalizer, False, False

        model_ok = self.llm is not None and await self.llm.ping()
        if model_ok:
            classifier = self.classifier or ModelColumnClassifier(self.llm)
            normalizer = self.normalizer or ModelCategoryNormalizer(self.llm)
            return classifier, normalizer, True, False

        logger.warning("Claude unavailable, falling back to header heuristics and unnormalized categories")
        classifier = self.classifier or HeuristicColumnClassifier()
        normalizer = self.normalizer or IdentityNormalizer()
        return classifier, normalizer, False, self.normalizer is None

    async def run(self, source_refs: List[str], master_ref: str) -> AggregationResult:
        """
        Aggregate all sources into the master sheet.

        Raises:
            AggregatorError (or a subclass) on any unrecoverable error.
            Nothing is written in that case.
        """
        self._set_stage(PipelineStage.START)
        try:
            return await self._run(source_refs, master_ref)
        except Exception:
            self._set_stage(PipelineStage.FAILED)
            raise

    async def _run(self, source_refs: List[str], master_ref: str) -> AggregationResult:
        source_refs = [ref.strip() for ref in source_refs if ref and ref.strip()]
        if not source_refs:
            raise AggregatorError("No source spreadsheets given")
        if not master_ref or not master_ref.strip():
            raise AggregatorError("No master spreadsheet given")

        result = AggregationResult(sources=len(source_refs))
        classifier, normalizer, model_assisted, needs_confirmation = await self._select_strategies()
        result.model_assisted = model_assisted

        # Fan-out read; one failure fails the run
        self._set_stage(PipelineStage.READING)
        sheets: List[SheetData] = await asyncio.gather(
            *(self.gateway.read_source(ref) for ref in source_refs)
        )

        self._set_stage(PipelineStage.CLASSIFYING)
        with_data = [s for s in sheets if len(s.rows) > 1]
        for sheet in sheets:
            if len(sheet.rows) <= 1:
                logger.info(f"No data rows in {sheet.reference}, skipping")
        mappings: List[ColumnMapping] = await asyncio.gather(
            *(classifier.classify(s.rows[0]) for s in with_data)
        )

        self._set_stage(PipelineStage.EXTRACTING)
        records: List[ExpenseRecord] = []
        for sheet, mapping in zip(with_data, mappings):
            logger.info(f"Mapping for {sheet.reference}: category={mapping.category}, amount={mapping.amount}")
            sheet_records, skipped = extract_records(sheet.rows[1:], mapping)
            records.extend(sheet_records)
            result.skipped_rows += skipped
        result.records = len(records)
        if result.skipped_rows:
            logger.info(f"Skipped {result.skipped_rows} rows without a usable category/amount")

        self._set_stage(PipelineStage.NORMALIZING)
        categories = {r.category for r in records}
        category_mapping = await normalizer.normalize(categories)
        result.category_mapping = category_mapping

        self._set_stage(PipelineStage.SUMMING)
        result.totals = sum_by_category(records, category_mapping)
        result.total = sum(result.totals.values())
        result.table = build_table(result.totals)
        logger.info(f"Aggregated {result.records} records into {len(result.totals)} categories, total {result.total}")

        if needs_confirmation and not await self._ask(
            "Claude is unavailable, so categories were not merged. Write unnormalized categories?"
        ):
            return self._abort(result, 'unnormalized categories declined')

        if self.dry_run:
            self._set_stage(PipelineStage.DONE)
            logger.info("Dry run, master sheet not touched")
            return result

        self._set_stage(PipelineStage.PRE_WRITE_CHECK)
        master_id = self.gateway.resolve_id(master_ref)
        master_sheet = await self.gateway.get_primary_sheet_name(master_id)
        result.destination_id = master_id
        result.destination_sheet = master_sheet

        existing = await self.gateway.read_range(master_id, master_sheet, READ_RANGE)
        if len(existing) > 1:
            logger.warning(f"Master sheet {master_id} already has {len(existing) - 1} data rows")
            if not await self._ask(
                f"Master sheet '{master_sheet}' already contains {len(existing) - 1} data rows. Overwrite?"
            ):
                return self._abort(result, 'overwrite declined')
            result.overwrote_rows = len(existing) - 1

        self._set_stage(PipelineStage.WRITING)
        await self.gateway.clear_range(master_id, master_sheet, CLEAR_RANGE)
        try:
            await self.gateway.write_range(master_id, master_sheet, WRITE_START_CELL, result.table)
        except Exception:
            # Clear already happened; leave the table in the log so it can be pasted back
            logger.error(f"Write failed after clearing {master_id}. Last computed table: {result.table}")
            raise
        result.written = True

        self._set_stage(PipelineStage.DONE)
        logger.info(result.message)
        return result

    def _abort(self, result: AggregationResult, reason: str) -> AggregationResult:
        self._set_stage(PipelineStage.ABORTED)
        result.aborted = True
        result.abort_reason = reason
        logger.info(f"Run aborted: {reason}")
        return result
