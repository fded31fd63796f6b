# tests/test_registry.py
"""Tests for handler registration and lazy endorsement"""
from __future__ import annotations

import asyncio

import pytest

from fakes import FakeHandler
from notifier.config import parse_handler_names
from notifier.core.handlers.email_handler import EmailHandler
from notifier.core.handlers.logfile_handler import LogFileHandler
from notifier.core.handlers.registry import (
    HandlerRegistry,
    build_handlers,
    endorse_handlers,
    known_handler_names,
)


class TestBuildHandlers:
    def test_builds_known_handlers_in_order(self):
        handlers = build_handlers(["logfile", "email"])
        assert list(handlers.keys()) == ["logfile", "email"]
        assert isinstance(handlers["email"], EmailHandler)
        assert isinstance(handlers["logfile"], LogFileHandler)

    def test_skips_unknown_and_duplicate_names(self):
        handlers = build_handlers(["email", "pager", "email"])
        assert list(handlers.keys()) == ["email"]

    def test_empty_list_builds_nothing(self):
        assert build_handlers([]) == {}

    def test_known_handler_names(self):
        assert set(known_handler_names()) == {"email", "logfile"}

    def test_parse_handler_names(self):
        assert parse_handler_names(" email, ,logfile,email ") == ["email", "logfile"]
        assert parse_handler_names("") == []


class TestEndorseHandlers:
    @pytest.mark.asyncio
    async def test_keeps_only_successfully_configured(self):
        ok = FakeHandler("ok")
        refused = FakeHandler("refused", configure_result=False)
        broken = FakeHandler("broken", configure_exc=RuntimeError("boom"))

        endorsed = await endorse_handlers({"ok": ok, "refused": refused, "broken": broken})

        assert endorsed == {"ok": ok}

    @pytest.mark.asyncio
    async def test_indexes_by_handler_name(self):
        handler = FakeHandler("real-name")
        endorsed = await endorse_handlers({"alias": handler})
        assert list(endorsed.keys()) == ["real-name"]


class TestHandlerRegistry:
    @pytest.mark.asyncio
    async def test_endorses_lazily_and_once(self):
        handler = FakeHandler("fake")
        registry = HandlerRegistry({"fake": handler})

        assert not registry.initialized
        assert registry.get("fake") is None

        first = await registry.ensure_endorsed()
        second = await registry.ensure_endorsed()

        assert first == second == {"fake": handler}
        assert handler.configure_calls == 1
        assert registry.initialized
        assert registry.get("fake") is handler
        assert registry.names() == ["fake"]

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_endorse_once(self):
        handler = FakeHandler("fake")
        registry = HandlerRegistry({"fake": handler})

        await asyncio.gather(*(registry.ensure_endorsed() for _ in range(5)))

        assert handler.configure_calls == 1

    @pytest.mark.asyncio
    async def test_dropped_handler_is_not_retrievable(self):
        handler = FakeHandler("fake", configure_result=False)
        registry = HandlerRegistry({"fake": handler})

        assert await registry.ensure_endorsed() == {}
        assert registry.get("fake") is None
        assert "fake" in registry.candidates

    def test_no_candidates(self):
        assert not HandlerRegistry(None).has_candidates
        assert not HandlerRegistry({}).has_candidates
