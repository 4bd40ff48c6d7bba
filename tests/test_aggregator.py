"""
Tests for the aggregation pipeline and its pure steps.
"""
import pytest

from budget_aggregator.aggregator import (
    AggregationPipeline,
    ExpenseRecord,
    PipelineStage,
    build_table,
    extract_records,
    sum_by_category,
)
from budget_aggregator.classifier import ColumnMapping, HeuristicColumnClassifier
from budget_aggregator.exceptions import AggregatorError, ClassificationError, NormalizationError, NotFoundError
from budget_aggregator.normalizer import IdentityNormalizer

from conftest import FakeGateway, FakeLLM, MASTER, SOURCE_A, SOURCE_B


def _heuristic_pipeline(gateway, **kwargs):
    return AggregationPipeline(
        gateway=gateway,
        classifier=HeuristicColumnClassifier(),
        normalizer=IdentityNormalizer(),
        **kwargs
    )


# ---- extract_records ---------------------------------------------------------


def test_extract_records_valid_rows():
    rows = [['Tape', 'Equipment', '10'], ['Cups', ' Food ', '5.50']]
    records, skipped = extract_records(rows, ColumnMapping(category=1, amount=2))
    assert records == [ExpenseRecord('Equipment', 10.0), ExpenseRecord('Food', 5.5)]
    assert skipped == 0


@pytest.mark.parametrize('row', [
    ['Tape'],                       # too short for amount index 2
    ['Tape', '   ', '10'],          # blank category
    ['Tape', 'Food', ''],           # blank amount
    ['Tape', 'Food', 'ten'],        # not a number
    ['Tape', 'Food', '$10'],        # no currency parsing
    ['Tape', 'Food', 'NaN'],
    ['Tape', 'Food', 'inf'],
])
def test_extract_records_skips_invalid_rows(row):
    records, skipped = extract_records([row], ColumnMapping(category=1, amount=2))
    assert records == []
    assert skipped == 1


@pytest.mark.parametrize('mapping', [
    ColumnMapping(category=None, amount=2),
    ColumnMapping(category=1, amount=None),
    ColumnMapping(),
])
def test_extract_records_incomplete_mapping_contributes_nothing(mapping):
    records, skipped = extract_records([['Tape', 'Food', '10']], mapping)
    assert records == []
    assert skipped == 1


# ---- summation / table -------------------------------------------------------


def test_sum_by_category_identity_keeps_spellings():
    records = [ExpenseRecord('Food', 1.0), ExpenseRecord('food', 2.0), ExpenseRecord('Food', 3.0)]
    totals = sum_by_category(records, {'Food': 'Food', 'food': 'food'})
    assert totals == {'Food': 4.0, 'food': 2.0}


def test_sum_by_category_merges_and_falls_back():
    records = [ExpenseRecord('Camera Gear', 5.0), ExpenseRecord('Photography Supplies', 2.5), ExpenseRecord('Food', 1.0)]
    totals = sum_by_category(records, {'Camera Gear': 'Photography', 'Photography Supplies': 'Photography'})
    assert totals == {'Photography': 7.5, 'Food': 1.0}


def test_build_table_sorted_by_category():
    table = build_table({'b': 2.0, 'B': 1.0, 'a': 3.0})
    assert table == [['Category', 'Amount'], ['B', 1.0], ['a', 3.0], ['b', 2.0]]


# ---- pipeline ----------------------------------------------------------------


async def test_two_source_scenario(gateway):
    pipeline = _heuristic_pipeline(gateway, confirm=lambda q: True)
    result = await pipeline.run([SOURCE_A, SOURCE_B], MASTER)

    assert result.totals == {'Audio Gear': 20.0, 'Equipment': 10.0, 'Food': 5.5}
    assert result.total == 35.5
    assert result.written
    assert result.records == 3
    assert result.skipped_rows == 0
    assert pipeline.stage == PipelineStage.DONE
    assert gateway.rows('master') == [
        ['Category', 'Amount'],
        ['Audio Gear', 20.0],
        ['Equipment', 10.0],
        ['Food', 5.5],
    ]


async def test_written_table_reads_back_equal(gateway):
    result = await _heuristic_pipeline(gateway).run([SOURCE_A, SOURCE_B], MASTER)
    read_back = await gateway.read_range('master', 'Master')
    assert read_back == result.table


async def test_output_order_deterministic(two_sources):
    tables = []
    for refs in ([SOURCE_A, SOURCE_B], [SOURCE_B, SOURCE_A]):
        gw = FakeGateway(two_sources)
        result = await _heuristic_pipeline(gw).run(refs, MASTER)
        tables.append(result.table)
    assert tables[0] == tables[1]
    names = [row[0] for row in tables[0][1:]]
    assert names == sorted(names)


async def test_decline_overwrite_leaves_master_unchanged(two_sources):
    existing = [['Category', 'Amount'], ['Old', '1'], ['Older', '2']]
    two_sources['master'] = ('Master', existing)
    gw = FakeGateway(two_sources)
    questions = []

    def decline(question):
        questions.append(question)
        return False

    pipeline = _heuristic_pipeline(gw, confirm=decline)
    result = await pipeline.run([SOURCE_A, SOURCE_B], MASTER)

    assert result.total == 35.5
    assert result.aborted
    assert not result.written
    assert pipeline.stage == PipelineStage.ABORTED
    assert gw.rows('master') == existing
    assert not gw.wrote()
    assert len(questions) == 1
    assert '35.5' in result.message


async def test_accept_overwrite_clears_stale_rows(two_sources):
    two_sources['master'] = ('Master', [['Category', 'Amount']] + [[f'Old {i}', str(i)] for i in range(10)])
    gw = FakeGateway(two_sources)
    result = await _heuristic_pipeline(gw, confirm=lambda q: True).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.written
    assert gw.rows('master') == result.table


async def test_header_only_master_needs_no_confirmation(two_sources):
    two_sources['master'] = ('Master', [['Category', 'Amount']])
    gw = FakeGateway(two_sources)
    # confirm=None declines everything, so a question would abort the run
    result = await _heuristic_pipeline(gw).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.written


async def test_async_confirm_callback(two_sources):
    two_sources['master'] = ('Master', [['a'], ['b'], ['c']])
    gw = FakeGateway(two_sources)

    async def approve(question):
        return True

    result = await _heuristic_pipeline(gw, confirm=approve).run([SOURCE_A], MASTER)
    assert result.written


async def test_short_row_is_skipped_without_error(two_sources):
    two_sources['sheetA'][1].append(['Lonely'])
    gw = FakeGateway(two_sources)
    result = await _heuristic_pipeline(gw).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.total == 35.5
    assert result.skipped_rows == 1


async def test_source_without_data_rows_is_ignored(two_sources):
    two_sources['empty'] = ('Empty', [['Item', 'Category', 'Cost']])
    gw = FakeGateway(two_sources)
    result = await _heuristic_pipeline(gw).run([SOURCE_A, 'empty'], MASTER)
    assert result.totals == {'Equipment': 10.0, 'Food': 5.5}


async def test_failed_read_fails_run_and_writes_nothing(gateway):
    pipeline = _heuristic_pipeline(gateway, confirm=lambda q: True)
    with pytest.raises(NotFoundError):
        await pipeline.run([SOURCE_A, 'https://docs.google.com/spreadsheets/d/missing/edit'], MASTER)
    assert pipeline.stage == PipelineStage.FAILED
    assert not gateway.wrote()


async def test_no_sources_is_an_error(gateway):
    with pytest.raises(AggregatorError):
        await _heuristic_pipeline(gateway).run([' ', ''], MASTER)


async def test_dry_run_does_not_touch_master(gateway):
    result = await _heuristic_pipeline(gateway, dry_run=True).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.total == 35.5
    assert not result.written
    assert not gateway.wrote()
    assert ('get_primary_sheet_name', 'master') not in gateway.calls


# ---- mode selection ----------------------------------------------------------


async def test_model_mode_uses_claude_for_columns_and_categories(gateway):
    llm = FakeLLM([
        '{"category": 1, "amount": 2}',
        '```json\n{"category": 1, "amount": 2}\n```',
        '{"Equipment": "Gear", "Audio Gear": "Gear", "Food": "Food"}',
    ])
    result = await AggregationPipeline(gateway, llm=llm).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.model_assisted
    assert result.totals == {'Gear': 30.0, 'Food': 5.5}
    assert result.total == 35.5
    # One normalization call over both sources
    assert sum('Merge these budget categories' in p for p in llm.prompts) == 1


async def test_bad_model_reply_fails_run(gateway):
    llm = FakeLLM(['no idea', 'no idea'])
    pipeline = AggregationPipeline(gateway, llm=llm, confirm=lambda q: True)
    with pytest.raises(ClassificationError):
        await pipeline.run([SOURCE_A, SOURCE_B], MASTER)
    assert not gateway.wrote()


async def test_ping_failure_falls_back_and_asks_before_writing(gateway):
    questions = []

    def approve(question):
        questions.append(question)
        return True

    llm = FakeLLM(alive=False)
    result = await AggregationPipeline(gateway, llm=llm, confirm=approve).run([SOURCE_A, SOURCE_B], MASTER)
    assert not result.model_assisted
    assert result.totals == {'Audio Gear': 20.0, 'Equipment': 10.0, 'Food': 5.5}
    assert result.written
    assert len(questions) == 1
    assert llm.prompts == []


async def test_ping_failure_declined_aborts_without_writing(gateway):
    pipeline = AggregationPipeline(gateway, llm=FakeLLM(alive=False), confirm=lambda q: False)
    result = await pipeline.run([SOURCE_A, SOURCE_B], MASTER)
    assert result.aborted
    assert result.total == 35.5
    assert not gateway.wrote()


async def test_write_failure_after_clear_propagates(gateway, caplog):
    async def broken_write(*args, **kwargs):
        raise RuntimeError('network down')

    gateway.write_range = broken_write
    pipeline = _heuristic_pipeline(gateway)
    with pytest.raises(RuntimeError):
        await pipeline.run([SOURCE_A, SOURCE_B], MASTER)
    assert pipeline.stage == PipelineStage.FAILED
    assert 'Last computed table' in caplog.text


async def test_payment_type_column_does_not_replace_category():
    gw = FakeGateway({
        'cards': ('Cards', [
            ['Category', 'Cost', 'Payment Type'],
            ['Food', '5', 'Visa'],
            ['Equipment', '10', 'Visa'],
        ]),
        'master': ('Master', []),
    })
    result = await _heuristic_pipeline(gw).run(['cards'], MASTER)
    assert result.totals == {'Food': 5.0, 'Equipment': 10.0}


async def test_bad_normalization_reply_fails_run(gateway):
    llm = FakeLLM([
        '{"category": 1, "amount": 2}',
        '{"category": 1, "amount": 2}',
        'not json',
    ])
    pipeline = AggregationPipeline(gateway, llm=llm, confirm=lambda q: True)
    with pytest.raises(NormalizationError):
        await pipeline.run([SOURCE_A, SOURCE_B], MASTER)
    assert pipeline.stage == PipelineStage.FAILED
    assert not gateway.wrote()


async def test_overwritten_row_count_reported(two_sources):
    two_sources['master'] = ('Master', [['Category', 'Amount'], ['Old', '1'], ['Older', '2']])
    gw = FakeGateway(two_sources)
    result = await _heuristic_pipeline(gw, confirm=lambda q: True).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.overwrote_rows == 2
    assert result.to_dict()['overwrote_rows'] == 2


async def test_empty_master_reports_no_overwrite(gateway):
    result = await _heuristic_pipeline(gateway).run([SOURCE_A, SOURCE_B], MASTER)
    assert result.overwrote_rows == 0
