"""Tests for conversation state stores and FSM helpers."""

import json
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.fsm import State, StatesGroup, resolve_state
from core.storage import JSONStorage, MemoryStorage


class Order(StatesGroup):
    address = State()
    payment = State()


# ── FSM helpers ──────────────────────────────────────────────────────────────


class TestStates:

    def test_names_come_from_declaration(self) -> None:
        assert Order.address.full_state == "Order:address"
        assert Order.names() == ("Order:address", "Order:payment")

    def test_equality_with_strings(self) -> None:
        assert Order.payment == "Order:payment"
        assert Order.payment != Order.address
        assert {Order.address, Order.address} == {Order.address}

    def test_explicit_name_and_group(self) -> None:
        s = State("custom", group="Flow")
        assert str(s) == "Flow:custom"
        assert State("bare").full_state == "bare"

    def test_unnamed_state_raises(self) -> None:
        with pytest.raises(ValueError):
            State().full_state

    def test_resolve_state(self) -> None:
        assert resolve_state(Order.address) == "Order:address"
        assert resolve_state("raw") == "raw"


# ── MemoryStorage ────────────────────────────────────────────────────────────


class TestMemoryStorage:

    @pytest.mark.asyncio
    async def test_set_get_reset(self) -> None:
        storage = MemoryStorage()
        await storage.set_state(1, 2, "A:b")
        assert storage.get_state(1, 2) == "A:b"
        assert storage.get_state(1, 3) is None
        await storage.reset_state(1, 2)
        assert storage.get_state(1, 2) is None

    @pytest.mark.asyncio
    async def test_missing_chat_uses_user(self) -> None:
        storage = MemoryStorage()
        await storage.set_state(None, 7, "s")
        assert storage.get_state(7, 7) == "s"

    @pytest.mark.asyncio
    async def test_close_clears(self) -> None:
        storage = MemoryStorage()
        await storage.set_state(1, 1, "s")
        await storage.close()
        assert storage.closed is True
        assert storage.get_state(1, 1) is None


# ── JSONStorage ──────────────────────────────────────────────────────────────


class TestJSONStorage:

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path) -> None:
        path = str(tmp_path / "states.json")
        storage = JSONStorage(path)
        await storage.set_state(1, 2, "Order:address")
        await storage.close()

        reloaded = JSONStorage(path)
        assert reloaded.get_state(1, 2) == "Order:address"
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == {"1:2": "Order:address"}

    @pytest.mark.asyncio
    async def test_reset_and_clear(self, tmp_path) -> None:
        path = tmp_path / "states.json"
        storage = JSONStorage(str(path))
        await storage.set_state(1, 2, "a")
        await storage.set_state(3, 4, "b")
        await storage.reset_state(1, 2)
        assert json.loads(path.read_text()) == {"3:4": "b"}
        await storage.clear()
        assert json.loads(path.read_text()) == {}

    def test_missing_file_starts_empty(self, tmp_path) -> None:
        storage = JSONStorage(str(tmp_path / "nested" / "states.json"))
        assert storage.get_state(1, 1) is None

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path) -> None:
        path = tmp_path / "nested" / "states.json"
        storage = JSONStorage(str(path))
        await storage.set_state(1, 1, "x")
        assert path.exists()

    def test_invalid_json_raises(self, tmp_path) -> None:
        path = tmp_path / "states.json"
        path.write_text("{broken")
        with pytest.raises(ValueError):
            JSONStorage(str(path))

    def test_non_object_raises(self, tmp_path) -> None:
        path = tmp_path / "states.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            JSONStorage(str(path))
