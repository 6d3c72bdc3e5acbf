"""
Tests for TransactionExecutor scope handling and error translation.
"""

import asyncio

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from subledger.billing.exceptions import SubscriptionConstraintError, TransactionFailedError
from subledger.db import TransactionExecutor, check_database_health
from tests.fixtures.async_db import create_mock_async_session, create_mock_session_factory


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransactionScope:
    """Test commit and rollback behaviour with a mocked session."""

    async def test_commits_on_success(self):
        session = create_mock_async_session()
        executor = TransactionExecutor(create_mock_session_factory(session))

        async with executor.transaction() as scoped:
            assert scoped is session

        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()
        session.close.assert_awaited_once()

    async def test_run_returns_result(self):
        session = create_mock_async_session()
        executor = TransactionExecutor(create_mock_session_factory(session))

        async def unit_of_work(scoped):
            assert scoped is session
            return "done"

        assert await executor.run(unit_of_work) == "done"
        session.commit.assert_awaited_once()

    async def test_rolls_back_and_propagates_application_errors(self):
        session = create_mock_async_session()
        executor = TransactionExecutor(create_mock_session_factory(session))

        async def unit_of_work(scoped):
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            await executor.run(unit_of_work)

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()

    async def test_rolls_back_on_cancellation(self):
        session = create_mock_async_session()
        executor = TransactionExecutor(create_mock_session_factory(session))
        entered = asyncio.Event()

        async def unit_of_work(scoped):
            entered.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(executor.run(unit_of_work))
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.asyncio
class TestErrorTranslation:
    """Test database errors are surfaced as billing errors."""

    async def test_integrity_error_on_commit(self):
        orig = Exception("UNIQUE constraint failed: billing_subscriptions.stripe_subscription_id")
        session = create_mock_async_session(
            commit_side_effect=IntegrityError("INSERT", {}, orig)
        )
        executor = TransactionExecutor(create_mock_session_factory(session))

        with pytest.raises(SubscriptionConstraintError) as exc_info:
            async with executor.transaction():
                pass

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert "UNIQUE constraint failed" in exc_info.value.context["detail"]

    async def test_integrity_error_in_body_rolls_back(self):
        session = create_mock_async_session()
        session.flush.side_effect = IntegrityError("INSERT", {}, Exception("FOREIGN KEY"))
        executor = TransactionExecutor(create_mock_session_factory(session))

        with pytest.raises(SubscriptionConstraintError):
            async with executor.transaction() as scoped:
                await scoped.flush()

        session.rollback.assert_awaited_once()

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("COMMIT", {}, Exception("could not serialize access")),
            InterfaceError("COMMIT", {}, Exception("connection is closed")),
        ],
    )
    async def test_transient_failures_are_retryable(self, error):
        session = create_mock_async_session(commit_side_effect=error)
        executor = TransactionExecutor(create_mock_session_factory(session))

        with pytest.raises(TransactionFailedError) as exc_info:
            async with executor.transaction():
                pass

        assert exc_info.value.retryable is True
        assert exc_info.value.__cause__ is error

    @pytest.mark.parametrize(
        "error",
        [
            PoolTimeoutError("QueuePool limit of size 1 overflow 0 reached"),
            DisconnectionError("connection invalidated"),
        ],
    )
    async def test_connection_unavailable_is_retryable(self, error):
        """Pool checkout failures are not DBAPI errors but still surface as retryable."""
        session = create_mock_async_session()
        session.execute.side_effect = error
        executor = TransactionExecutor(create_mock_session_factory(session))

        with pytest.raises(TransactionFailedError) as exc_info:
            async with executor.transaction() as scoped:
                await scoped.execute(text("SELECT 1"))

        assert exc_info.value.retryable is True
        assert exc_info.value.__cause__ is error
        assert exc_info.value.context["detail"] == str(error)
        session.rollback.assert_awaited_once()

    async def test_sessions_never_expire_on_commit(self):
        session = create_mock_async_session()
        factory = create_mock_session_factory(session)
        executor = TransactionExecutor(factory)

        async with executor.transaction():
            pass

        factory.assert_called_once_with(expire_on_commit=False)


@pytest.mark.integration
@pytest.mark.asyncio
class TestHealthCheck:
    async def test_healthy_database(self, transaction_executor):
        assert await check_database_health(transaction_executor) is True

    async def test_unreachable_database(self):
        session = create_mock_async_session()
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
        executor = TransactionExecutor(create_mock_session_factory(session))

        assert await check_database_health(executor) is False

    async def test_scope_sees_committed_rows_only(self, transaction_executor):
        async with transaction_executor.transaction() as session:
            await session.execute(text("CREATE TABLE scratch (n INTEGER)"))

        with pytest.raises(RuntimeError):
            async with transaction_executor.transaction() as session:
                await session.execute(text("INSERT INTO scratch (n) VALUES (1)"))
                raise RuntimeError("abort")

        async with transaction_executor.transaction() as session:
            count = await session.scalar(text("SELECT COUNT(*) FROM scratch"))

        assert count == 0
