"""Tests for the event emitter."""

from __future__ import annotations

import logging

import pytest

from convergence_core.core import EventEmitter


@pytest.fixture
def emitter():
    return EventEmitter()


class TestRegistration:

    def test_on_and_emit(self, emitter):
        received = []
        emitter.on("ping", received.append)

        assert emitter.emit("ping", {"n": 1}) == 1
        assert received == [{"n": 1}]

    def test_once_fires_a_single_time(self, emitter):
        received = []
        emitter.once("ping", received.append)

        emitter.emit("ping", 1)
        emitter.emit("ping", 2)

        assert received == [1]
        assert emitter.listeners("ping") == []

    def test_off(self, emitter):
        received = []
        emitter.on("ping", received.append)

        assert emitter.off("ping", received.append) is True
        assert emitter.off("ping", received.append) is False
        assert emitter.emit("ping", 1) == 0
        assert received == []

    def test_on_returns_the_handler(self, emitter):
        def handler(payload):
            pass

        assert emitter.on("ping", handler) is handler
        assert emitter.listeners("ping") == [handler]

    def test_remove_all_listeners(self, emitter):
        emitter.on("a", lambda p: None)
        emitter.on("b", lambda p: None)

        emitter.remove_all_listeners("a")
        assert emitter.listeners("a") == []
        assert len(emitter.listeners("b")) == 1

        emitter.remove_all_listeners()
        assert emitter.listeners("b") == []


class TestDelivery:

    def test_wildcard_receives_event_name(self, emitter, events):
        specific = []
        emitter.on("ping", specific.append)
        emitter.on("*", events)

        assert emitter.emit("ping", 7) == 2
        assert specific == [7]
        assert events.collected == [("ping", 7)]

    def test_handler_errors_are_contained(self, emitter, caplog):
        received = []

        def broken(payload):
            raise RuntimeError("handler exploded")

        emitter.on("ping", broken)
        emitter.on("ping", received.append)

        with caplog.at_level(logging.ERROR):
            assert emitter.emit("ping", 1) == 2

        assert received == [1]
        assert "handler exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(self, emitter):
        received = []

        async def handler(payload):
            received.append(payload)

        emitter.on("ping", handler)
        emitter.emit("ping", "a")

        assert received == []
        await emitter.drain()
        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_async_handler_errors_are_logged(self, emitter, caplog):
        async def handler(payload):
            raise ValueError("async failure")

        emitter.on("ping", handler)

        with caplog.at_level(logging.ERROR):
            emitter.emit("ping", None)
            await emitter.drain()

        assert "async failure" in caplog.text

    def test_async_handler_without_loop_is_skipped(self, emitter, caplog):
        called = []

        async def handler(payload):
            called.append(payload)

        emitter.on("ping", handler)

        with caplog.at_level(logging.WARNING):
            assert emitter.emit("ping", 1) == 1

        assert called == []
        assert "No running loop" in caplog.text
