"""
Tests for the client exception trap.
"""

import asyncio

import pytest

from samajh_proctor.services.exception_trap import ClientExceptionTrap, describe


@pytest.fixture
def messages():
    return []


@pytest.fixture
def trap(messages):
    trap = ClientExceptionTrap(messages.append)
    trap.install()
    return trap


class TestDescribe:

    def test_exception_with_text(self):
        assert describe(KeyError("answers")) == "KeyError: 'answers'"

    def test_exception_without_text(self):
        assert describe(RuntimeError()) == "RuntimeError"

    def test_string(self):
        assert describe("  TypeError: x is undefined ") == "TypeError: x is undefined"

    def test_blank_string(self):
        assert describe("   ") == "Unknown client error"


class TestCapture:

    def test_forwards_message(self, trap, messages):
        assert trap.capture(ValueError("bad")) is True
        assert messages == ["ValueError: bad"]
        assert trap.last_message == "ValueError: bad"
        assert trap.captured == 1

    def test_uninstalled_trap_ignores(self, trap, messages):
        trap.uninstall()
        assert trap.capture("boom") is False
        assert messages == []


class TestWatch:

    async def test_failed_task_is_captured(self, trap, messages):
        async def crash():
            raise ZeroDivisionError("division by zero")

        task = asyncio.ensure_future(crash())
        trap.watch(task)
        with pytest.raises(ZeroDivisionError):
            await task
        await asyncio.sleep(0)

        assert messages == ["ZeroDivisionError: division by zero"]

    async def test_cancelled_task_is_ignored(self, trap, messages):
        task = asyncio.ensure_future(asyncio.sleep(10))
        trap.watch(task)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

        assert messages == []

    async def test_successful_task_is_ignored(self, trap, messages):
        task = asyncio.ensure_future(asyncio.sleep(0))
        trap.watch(task)
        await task
        await asyncio.sleep(0)
        assert messages == []

    def test_none_task(self, trap):
        trap.watch(None)
