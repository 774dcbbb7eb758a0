"""Tests for the delivery queue table operations."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from techhub.core.datetime_utils import utc_now
from techhub.models import DeliveryTask, NewsletterIssue
from techhub.schemas.newsletter import PublishNewsletterRequest
from techhub.services.delivery_queue import (
    IssueNotFoundError,
    count_pending_tasks,
    delete_issues_older_than,
    delete_task,
    dequeue_task,
    enqueue_issue_and_tasks,
    get_issue_content,
    reschedule_task,
)

pytestmark = pytest.mark.asyncio


def _request() -> PublishNewsletterRequest:
    return PublishNewsletterRequest(
        title="Release notes",
        content={"html": "<h1>New</h1>", "text": "New"},
    )


class TestEnqueue:
    async def test_enqueue_fans_out_to_subscribers(
        self, db_session_factory, subscriber_factory, user_factory
    ):
        await subscriber_factory("one@example.com")
        await subscriber_factory("two@example.com")
        await user_factory(email="nope@example.com")

        async with db_session_factory() as db:
            issue_id = await enqueue_issue_and_tasks(db, _request())
            await db.commit()

        async with db_session_factory() as db:
            issue = await db.get(NewsletterIssue, issue_id)
            tasks = (await db.execute(select(DeliveryTask))).scalars().all()

        assert issue.title == "Release notes"
        assert {t.recipient_email for t in tasks} == {"one@example.com", "two@example.com"}
        assert all(t.newsletter_issue_id == issue_id for t in tasks)
        assert all(t.retry_count == 0 for t in tasks)
        assert all(t.execute_after <= utc_now() for t in tasks)

    async def test_rollback_discards_issue_and_tasks(self, db_session_factory, subscriber_factory):
        await subscriber_factory()

        async with db_session_factory() as db:
            await enqueue_issue_and_tasks(db, _request())
            await db.rollback()

        async with db_session_factory() as db:
            assert await count_pending_tasks(db) == 0
            assert (await db.execute(select(NewsletterIssue))).first() is None


class TestDequeue:
    async def test_dequeue_returns_locked_task_with_open_session(
        self, db_session_factory, task_factory
    ):
        task = await task_factory(recipient_email="reader@example.com", retry_count=2)

        dequeued = await dequeue_task(db_session_factory)
        try:
            assert dequeued.issue_id == task.newsletter_issue_id
            assert dequeued.recipient_email == "reader@example.com"
            assert dequeued.retry_count == 2
        finally:
            await dequeued.session.rollback()
            await dequeued.session.close()

    async def test_dequeue_skips_future_tasks(self, db_session_factory, task_factory):
        await task_factory(execute_after=utc_now() + timedelta(hours=1))

        assert await dequeue_task(db_session_factory) is None

    async def test_reschedule_updates_retry_and_time(self, db_session_factory, task_factory):
        task = await task_factory(recipient_email="reader@example.com")

        async with db_session_factory() as db:
            execute_after = await reschedule_task(
                db, task.newsletter_issue_id, "reader@example.com", 3, 120
            )
            await db.commit()

        async with db_session_factory() as db:
            stored = (await db.execute(select(DeliveryTask))).scalar_one()
        assert stored.retry_count == 3
        assert stored.execute_after == execute_after
        assert execute_after > utc_now() + timedelta(seconds=100)

    async def test_delete_task_removes_only_that_recipient(
        self, db_session_factory, issue_factory, task_factory
    ):
        issue = await issue_factory()
        task = await task_factory(issue=issue, recipient_email="a@example.com")
        await task_factory(issue=issue, recipient_email="b@example.com")

        async with db_session_factory() as db:
            await delete_task(db, task.newsletter_issue_id, "a@example.com")
            await db.commit()

        async with db_session_factory() as db:
            remaining = (await db.execute(select(DeliveryTask.recipient_email))).scalars().all()
        assert remaining == ["b@example.com"]


class TestIssues:
    async def test_get_issue_content_missing(self, db_session_factory):
        async with db_session_factory() as db:
            with pytest.raises(IssueNotFoundError):
                await get_issue_content(db, uuid.uuid4())

    async def test_old_issue_with_pending_tasks_is_kept(
        self, db_session_factory, issue_factory, task_factory
    ):
        delivered = await issue_factory(created_at=utc_now() - timedelta(days=8))
        pending = await issue_factory(created_at=utc_now() - timedelta(days=8))
        await task_factory(issue=pending)

        async with db_session_factory() as db:
            deleted = await delete_issues_older_than(db, utc_now() - timedelta(days=7))
            await db.commit()

        assert deleted == 1
        async with db_session_factory() as db:
            issue_ids = (await db.execute(select(NewsletterIssue.id))).scalars().all()
            task_issue_ids = (
                (await db.execute(select(DeliveryTask.newsletter_issue_id))).scalars().all()
            )
        assert issue_ids == [pending.id]
        assert task_issue_ids == [pending.id]
        assert delivered.id not in issue_ids
