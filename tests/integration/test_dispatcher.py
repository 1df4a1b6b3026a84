"""Integration tests for WriteBackDispatcher: queue + processor + sync log."""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from tourdesk.config import Settings
from tourdesk.models.booking import Operator, Revenue
from tourdesk.models.sync import LogStatus, QueueStatus, SyncAction, SyncLog, SyncModel, SyncQueueItem
from tourdesk.sync.dispatcher import WriteBackDispatcher, build_dispatcher
from tourdesk.sync.hooks import SyncSession
from tourdesk.sync.processor import QueueProcessor
from tourdesk.sync.queue import WriteBackQueue


@pytest.fixture
def queue(engine):
    return WriteBackQueue(engine, max_retries=3)


@pytest.fixture
def revenue(test_session, seeded_request, users):
    revenue = Revenue(
        request_id=seeded_request.id,
        payment_date=date(2024, 3, 1),
        payment_type="Deposit",
        amount_vnd=Decimal("10000000"),
        user_id=users["ACCOUNTANT"].id,
    )
    test_session.add(revenue)
    test_session.commit()
    test_session.refresh(revenue)
    return revenue


def _dispatcher(queue, sheets, engine, **kwargs) -> WriteBackDispatcher:
    return WriteBackDispatcher(queue, QueueProcessor(sheets, engine), engine, **kwargs)


def _logs(engine):
    with Session(engine) as s:
        return s.exec(select(SyncLog).order_by(SyncLog.id)).all()


class TestScenarioA:
    @pytest.mark.asyncio
    async def test_one_pass_processes_mixed_batch(
        self, engine, queue, sheets, seeded_request, seeded_operator, revenue
    ):
        queue.enqueue(SyncModel.OPERATOR, SyncAction.UPDATE, seeded_operator.id, sheet_row_index=20)
        queue.enqueue(SyncModel.REVENUE, SyncAction.UPDATE, revenue.id, sheet_row_index=21)
        queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)

        result = await _dispatcher(queue, sheets, engine, batch_size=25).run()

        assert result.processed == 3
        assert result.succeeded == 3
        assert result.failed == 0
        assert sheets.append_row.await_count == 1
        assert sheets.update_rows.await_count == 2

        logs = _logs(engine)
        assert len(logs) == 3
        assert {log.action for log in logs} == {"WRITE_BACK_UPDATE", "WRITE_BACK_CREATE"}
        assert all(log.status == LogStatus.SUCCESS for log in logs)
        create_log = next(log for log in logs if log.action == "WRITE_BACK_CREATE")
        assert create_log.row_index == 57
        assert create_log.record_id == str(seeded_request.id)

        assert result.queue_stats.pending == 0
        assert result.queue_stats.completed == 3


class TestLinkedFollowUp:
    @pytest.mark.asyncio
    async def test_update_after_create_updates_in_place(self, engine, queue, sheets, seeded_request):
        queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)
        await _dispatcher(queue, sheets, engine).run()

        queue.enqueue(SyncModel.REQUEST, SyncAction.UPDATE, seeded_request.id)
        await _dispatcher(queue, sheets, engine).run()

        assert sheets.append_row.await_count == 1
        updates = sheets.update_rows.await_args.args[1]
        assert updates[0].row_index == 57

    @pytest.mark.asyncio
    async def test_update_queued_before_link_resolves_row(self, engine, queue, sheets, seeded_request):
        """CREATE and UPDATE in the same batch: the UPDATE uses the row the CREATE just linked."""
        queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)
        queue.enqueue(SyncModel.REQUEST, SyncAction.UPDATE, seeded_request.id)

        result = await _dispatcher(queue, sheets, engine).run()

        assert result.succeeded == 2
        assert sheets.append_row.await_count == 1
        assert sheets.update_rows.await_args.args[1][0].row_index == 57


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_item_retried_then_failed(self, engine, queue, sheets, seeded_request):
        sheets.append_row.side_effect = RuntimeError("quota exceeded")
        item = queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)

        for _ in range(3):
            await _dispatcher(queue, sheets, engine).run()

        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
        assert stored.status == QueueStatus.FAILED
        assert stored.retries == 3
        assert stored.last_error == "quota exceeded"

        failed_logs = [log for log in _logs(engine) if log.status == LogStatus.FAILED]
        assert len(failed_logs) == 3
        assert failed_logs[0].error_message == "quota exceeded"

        # A fourth pass has nothing to claim
        result = await _dispatcher(queue, sheets, engine).run()
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_failure_waits_for_the_next_pass(self, engine, queue, sheets, seeded_request):
        """A failed item is attempted once per pass, so one outage costs one retry."""
        sheets.append_row.side_effect = RuntimeError("503 backend unavailable")
        item = queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)

        result = await _dispatcher(queue, sheets, engine, batch_size=25, max_batches=4).run()

        assert result.processed == 1
        assert result.failed == 1
        assert sheets.append_row.await_count == 1
        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
        assert stored.status == QueueStatus.PENDING
        assert stored.retries == 1

        sheets.append_row.side_effect = None
        retried = await _dispatcher(queue, sheets, engine).run()
        assert retried.succeeded == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_pass(self, engine, queue, sheets, seeded_request, seeded_operator):
        sheets.update_rows.side_effect = RuntimeError("boom")
        queue.enqueue(SyncModel.OPERATOR, SyncAction.UPDATE, seeded_operator.id, sheet_row_index=3)
        queue.enqueue(SyncModel.REQUEST, SyncAction.CREATE, seeded_request.id)

        result = await _dispatcher(queue, sheets, engine).run()

        assert result.processed == 2
        assert result.failed == 1
        assert result.succeeded == 1
        assert result.queue_stats.pending == 1


class TestBounds:
    @pytest.mark.asyncio
    async def test_stops_after_max_batches(self, engine, queue, sheets):
        # Orphan items (no such record) succeed without sheet calls
        for record_id in range(1000, 1010):
            queue.enqueue(SyncModel.REQUEST, SyncAction.UPDATE, record_id, sheet_row_index=2)

        result = await _dispatcher(queue, sheets, engine, batch_size=3, max_batches=2).run()

        assert result.processed == 6
        assert result.queue_stats.pending == 4

    @pytest.mark.asyncio
    async def test_empty_queue(self, engine, queue, sheets):
        result = await _dispatcher(queue, sheets, engine).run()
        assert result.counts() == {
            "processed": 0, "succeeded": 0, "failed": 0, "reset": 0, "cleaned": 0,
        }


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_reclaims_stuck_items_first(self, engine, queue, sheets):
        item = queue.enqueue(SyncModel.REQUEST, SyncAction.DELETE, 1)
        queue.dequeue(25)
        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
            stored.locked_at = datetime.utcnow() - timedelta(minutes=30)
            s.add(stored)
            s.commit()

        result = await _dispatcher(queue, sheets, engine).run()

        assert result.reset == 1
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_cleanup_only_with_maintenance_flag(self, engine, queue, sheets):
        item = queue.enqueue(SyncModel.REQUEST, SyncAction.DELETE, 1)
        await _dispatcher(queue, sheets, engine).run()
        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
            stored.processed_at = datetime.utcnow() - timedelta(days=8)
            s.add(stored)
            s.commit()

        plain = await _dispatcher(queue, sheets, engine).run()
        assert plain.cleaned == 0

        maintenance = await _dispatcher(queue, sheets, engine).run(run_maintenance=True)
        assert maintenance.cleaned == 1
        assert maintenance.queue_stats.completed == 0


class TestBuildDispatcher:
    def test_wires_settings(self, engine, sheets):
        settings = Settings(
            _env_file=None,
            writeback_batch_size=10,
            writeback_max_batches=2,
            queue_max_retries=5,
        )
        dispatcher = build_dispatcher(engine, settings, sheets)
        assert dispatcher.batch_size == 10
        assert dispatcher.max_batches == 2
        assert dispatcher.queue.max_retries == 5
        assert dispatcher.processor.sheets is sheets


class TestConfiguredRetryCeiling:
    @pytest.mark.asyncio
    async def test_hook_items_follow_configured_ceiling(
        self, engine, sheets, seeded_request, monkeypatch
    ):
        settings = Settings(_env_file=None, queue_max_retries=5)
        monkeypatch.setattr("tourdesk.config._settings", settings)
        sheets.append_row.side_effect = RuntimeError("quota exceeded")

        with SyncSession(engine) as s:
            s.add(Operator(
                request_id=seeded_request.id,
                service_date=date(2024, 3, 12),
                service_name="Water puppet show",
            ))
            s.commit()

        with Session(engine) as s:
            item = s.exec(select(SyncQueueItem)).one()
        assert item.max_retries == 5

        for _ in range(3):
            await build_dispatcher(engine, settings, sheets).run()
        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
        assert (stored.retries, stored.status) == (3, QueueStatus.PENDING)

        for _ in range(2):
            await build_dispatcher(engine, settings, sheets).run()
        with Session(engine) as s:
            stored = s.get(SyncQueueItem, item.id)
        assert (stored.retries, stored.status) == (5, QueueStatus.FAILED)
