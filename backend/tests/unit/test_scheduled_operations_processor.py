"""
Unit Tests for ScheduledOperationsProcessor

The processor opens its own sessions, so operations are seeded with
committed sessions from the same factory. Email delivery is mocked.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update

from csi_portal.core.exceptions import ConflictError
from csi_portal.db.tables import scheduled_operations
from csi_portal.services.scheduled_operations_processor import ScheduledOperationsProcessor
from csi_portal.services.survey_service import survey_service

SENT = {'total': 1, 'sent': 1, 'failed': 0, 'skipped': 0, 'errors': []}


async def seed_operation(session_factory, operation_type='Blast', due=True, **schedule):
    async with session_factory() as session:
        survey = await survey_service.create_survey(session, {
            'title': 'Scheduled survey',
            'start_date': (datetime.utcnow() - timedelta(days=1)).isoformat(),
            'end_date': (datetime.utcnow() + timedelta(days=10)).isoformat(),
        })
        data = {
            'survey_id': survey['survey_id'],
            'scheduled_date': datetime.utcnow() - timedelta(hours=1),
            'email_template': '<p>{{survey_link}}</p>',
            **schedule,
        }
        if operation_type == 'Blast':
            operation = await survey_service.schedule_blast(session, data)
        else:
            operation = await survey_service.schedule_reminder(session, data)

        next_run = datetime.utcnow() - timedelta(minutes=1) if due else datetime.utcnow() + timedelta(days=1)
        await session.execute(
            update(scheduled_operations)
            .where(scheduled_operations.c.operation_id == operation['operation_id'])
            .values(next_execution_at=next_run)
        )
        await session.commit()
        return operation


async def load(session_factory, operation_id):
    async with session_factory() as session:
        row = (await session.execute(
            select(scheduled_operations).where(scheduled_operations.c.operation_id == operation_id)
        )).first()
        return dict(row._mapping)


class TestProcessing:

    @pytest.mark.asyncio
    async def test_one_time_blast_completes(self, session_factory):
        operation = await seed_operation(session_factory, target_criteria={'department_ids': ['d1']})
        processor = ScheduledOperationsProcessor(session_factory=session_factory)

        with patch(
            'csi_portal.services.scheduled_operations_processor.email_service.send_survey_blast',
            new=AsyncMock(return_value=SENT),
        ) as blast:
            processed = await processor.process_scheduled_operations()

        assert processed == 1
        assert blast.await_args.kwargs['target_criteria'] == {'department_ids': ['d1']}
        stored = await load(session_factory, operation['operation_id'])
        assert stored['status'] == 'Completed'
        assert stored['execution_count'] == 1
        assert stored['last_executed_at'] is not None
        assert processor.stats['total_processed'] == 1

    @pytest.mark.asyncio
    async def test_recurring_reminder_is_rescheduled(self, session_factory):
        operation = await seed_operation(
            session_factory, 'Reminder', frequency='daily', scheduled_time='08:00'
        )
        processor = ScheduledOperationsProcessor(session_factory=session_factory)

        with patch(
            'csi_portal.services.scheduled_operations_processor.email_service.send_reminders',
            new=AsyncMock(return_value=SENT),
        ):
            await processor.process_scheduled_operations()

        stored = await load(session_factory, operation['operation_id'])
        assert stored['status'] == 'Pending'
        assert stored['next_execution_at'] > datetime.utcnow()
        assert (stored['next_execution_at'].hour, stored['next_execution_at'].minute) == (8, 0)

    @pytest.mark.asyncio
    async def test_failure_marks_operation_failed(self, session_factory):
        operation = await seed_operation(session_factory)
        processor = ScheduledOperationsProcessor(session_factory=session_factory)

        with patch(
            'csi_portal.services.scheduled_operations_processor.email_service.send_survey_blast',
            new=AsyncMock(side_effect=RuntimeError('relay down')),
        ):
            await processor.process_scheduled_operations()

        stored = await load(session_factory, operation['operation_id'])
        assert stored['status'] == 'Failed'
        assert stored['error_message'] == 'relay down'
        assert processor.stats['total_failed'] == 1

    @pytest.mark.asyncio
    async def test_future_and_cancelled_operations_are_ignored(self, session_factory):
        await seed_operation(session_factory, due=False)
        cancelled = await seed_operation(session_factory)
        async with session_factory() as session:
            await survey_service.cancel_scheduled_operation(session, cancelled['operation_id'])
            await session.commit()
        processor = ScheduledOperationsProcessor(session_factory=session_factory)

        with patch(
            'csi_portal.services.scheduled_operations_processor.email_service.send_survey_blast',
            new=AsyncMock(return_value=SENT),
        ) as blast:
            assert await processor.process_scheduled_operations() == 0

        blast.assert_not_awaited()
        assert processor.stats['last_run'] is not None


class TestControl:

    @pytest.mark.asyncio
    async def test_trigger_while_running_conflicts(self, session_factory):
        processor = ScheduledOperationsProcessor(session_factory=session_factory)
        processor.is_running = True

        with pytest.raises(ConflictError):
            await processor.trigger_processing()

    @pytest.mark.asyncio
    async def test_tick_skips_overlapping_cycle(self, session_factory):
        processor = ScheduledOperationsProcessor(session_factory=session_factory)
        processor.is_running = True

        with patch.object(processor, 'process_scheduled_operations', new=AsyncMock()) as process:
            await processor.tick()

        process.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory):
        processor = ScheduledOperationsProcessor(interval_seconds=3600, session_factory=session_factory)

        await processor.start()
        assert processor.get_status()['is_scheduled'] is True

        await processor.stop()
        assert processor.get_status()['is_scheduled'] is False
        assert processor.running is False
