"""Tests for the in-memory RecordStore query and update subset."""

import pytest

from rentbot.store import DuplicateKeyError, MemoryRecordStore
from rentbot.store.memory import apply_update, matches


# ── Filters ────────────────────────────────────────────────────────

class TestMatches:
    def test_equality_and_dotted_path(self):
        doc = {"phone": "1", "session": {"kind": "listing", "step": "asking_title"}}
        assert matches(doc, {"phone": "1", "session.kind": "listing"})
        assert not matches(doc, {"session.step": "asking_type"})

    def test_none_matches_missing_or_null(self):
        assert matches({"phone": "1"}, {"session": None})
        assert matches({"phone": "1", "session": None}, {"session": None})
        assert not matches({"phone": "1", "session": {"kind": "search"}}, {"session": None})

    def test_comparison_operators(self):
        doc = {"credits": 3}
        assert matches(doc, {"credits": {"$gte": 3}})
        assert not matches(doc, {"credits": {"$gt": 3}})
        assert matches(doc, {"credits": {"$lte": 3, "$gte": 1}})
        assert not matches({}, {"credits": {"$gte": 0}})

    def test_regex_case_insensitive(self):
        doc = {"suburb": "Mount Pleasant"}
        assert matches(doc, {"suburb": {"$regex": "^mount pleasant$", "$options": "i"}})
        assert not matches(doc, {"suburb": {"$regex": "^mount pleasant$"}})

    def test_or(self):
        doc = {"title": "Cottage", "text": ""}
        assert matches(doc, {"$or": [{"title": "Flat"}, {"title": "Cottage"}]})
        assert not matches(doc, {"$or": [{"title": "Flat"}, {"text": "x"}]})

    def test_in_and_ne(self):
        doc = {"status": "pending"}
        assert matches(doc, {"status": {"$in": ["pending", "failed"]}})
        assert matches(doc, {"status": {"$ne": "success"}})


class TestApplyUpdate:
    def test_set_inc_unset(self):
        doc = {"credits": 3, "session": {"step": "a"}}
        apply_update(doc, {"$inc": {"credits": -1}, "$set": {"session.step": "b"}})
        assert doc == {"credits": 2, "session": {"step": "b"}}
        apply_update(doc, {"$unset": {"session": ""}})
        assert "session" not in doc

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError):
            apply_update({}, {"$push": {"x": 1}})


# ── Store operations ───────────────────────────────────────────────

class TestMemoryRecordStore:
    async def test_unique_key_enforced(self):
        store = MemoryRecordStore()
        await store.insert_one("users", {"phone": "1"})
        with pytest.raises(DuplicateKeyError):
            await store.insert_one("users", {"phone": "1"})

    async def test_conditional_update_reports_match(self):
        store = MemoryRecordStore()
        await store.insert_one("users", {"phone": "1", "credits": 1})
        assert await store.update_one("users", {"phone": "1", "credits": {"$gte": 2}}, {"$inc": {"credits": -2}}) is False
        assert await store.update_one("users", {"phone": "1", "credits": {"$gte": 1}}, {"$inc": {"credits": -1}}) is True
        doc = await store.find_one("users", {"phone": "1"})
        assert doc["credits"] == 0

    async def test_find_sort_and_limit(self):
        store = MemoryRecordStore()
        for i in range(5):
            await store.insert_one("listings", {"id": f"L{i}", "rank": i})
        docs = await store.find("listings", {}, sort=[("rank", -1)], limit=2)
        assert [d["id"] for d in docs] == ["L4", "L3"]

    async def test_returned_documents_are_copies(self):
        store = MemoryRecordStore()
        await store.insert_one("users", {"phone": "1", "tags": []})
        doc = await store.find_one("users", {"phone": "1"})
        doc["tags"].append("x")
        again = await store.find_one("users", {"phone": "1"})
        assert again["tags"] == []

    async def test_update_many_counts(self):
        store = MemoryRecordStore()
        await store.insert_one("users", {"phone": "1", "credits": 0})
        await store.insert_one("users", {"phone": "2", "credits": 5})
        assert await store.update_many("users", {}, {"$set": {"credits": 10}}) == 2
