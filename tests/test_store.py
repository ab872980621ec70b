from __future__ import annotations

import threading
from pathlib import Path

import pytest

from chat_ledger.identity import identify
from chat_ledger.reconcile import Append, CreateNew, Replace, Unrelated
from chat_ledger.segmenter import segment
from chat_ledger.store import ConversationStore

from conftest import a, u


def _pairs(messages):
    return [(m["role"], m["content"]) for m in messages]


def test_create_then_lookup_by_identity(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    messages = [u("Hello"), a("Hi")]
    ref = store.commit(CreateNew(messages))

    found = store.lookup(identify(messages))
    assert found is not None
    assert found.reference == ref
    assert found.messages == messages
    assert (tmp_data_dir / "conversations" / f"{ref}.json").exists()
    assert (tmp_data_dir / "markdown" / f"chat-{ref}.md").exists()


def test_lookup_missing_identity(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    assert store.lookup("0" * 16) is None
    assert store.load("nope") is None


def test_append_extends_same_reference(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("prompt1"), a("response1")]))
    assert store.commit(Append([u("prompt2"), a("response2")]), ref) == ref

    convo = store.load(ref)
    assert _pairs(convo.messages) == [
        ("user", "prompt1"),
        ("assistant", "response1"),
        ("user", "prompt2"),
        ("assistant", "response2"),
    ]
    assert len(list((tmp_data_dir / "conversations").glob("*.json"))) == 1


def test_empty_append_leaves_files_untouched(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Hello"), a("Hi")]))
    record = tmp_data_dir / "conversations" / f"{ref}.json"
    rendered = tmp_data_dir / "markdown" / f"chat-{ref}.md"
    before = (record.read_bytes(), rendered.read_bytes())

    assert store.commit(Append([]), ref) == ref
    assert (record.read_bytes(), rendered.read_bytes()) == before


def test_replace_keeps_reference_and_reindexes(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Build X"), a("Done")]))
    created_at = store.load(ref).created_at

    edited = [u("Build X and Y"), a("Done")]
    assert store.commit(Replace(edited), ref) == ref

    convo = store.load(ref)
    assert convo.messages == edited
    assert convo.created_at == created_at
    assert convo.identity == identify(edited)
    assert store.lookup(identify(edited)).reference == ref
    text = (tmp_data_dir / "markdown" / f"chat-{ref}.md").read_text(encoding="utf-8")
    assert "Build X and Y" in text
    assert "**User**\n\nBuild X\n" not in text


def test_commit_rejects_invalid_plans(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    with pytest.raises(ValueError):
        store.commit(Unrelated([u("x")]))
    with pytest.raises(ValueError):
        store.commit(Append([u("x")]))
    with pytest.raises(ValueError):
        store.commit(CreateNew([]))
    with pytest.raises(KeyError):
        store.commit(Replace([u("x")]), "missing-ref")


def test_capture_identity_is_registered_as_alias(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("q1"), a("r1"), u("q2"), a("r2")]))
    partial = [u("q2"), a("r2"), u("q3")]
    store.commit(Append([u("q3")]), ref, identity=identify(partial))

    assert store.lookup(identify(partial)).reference == ref


def test_markdown_export_segments_back(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir), include_timestamps=True)
    messages = [
        u("Show me a loop", "2024-01-15T10:00:00Z"),
        a("```python\nfor i in range(3):\n    print(i)\n```", "2024-01-15T10:00:05Z"),
    ]
    ref = store.commit(CreateNew(messages))

    text = store.export_markdown(ref)
    assert segment(text) == messages
    assert "**You:**" in store.export_markdown(ref, simple=True)


def test_corrupt_record_is_moved_aside(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Hello")]))
    record = tmp_data_dir / "conversations" / f"{ref}.json"
    record.write_text("{not json", encoding="utf-8")

    assert store.load(ref) is None
    assert not record.exists()
    assert (tmp_data_dir / "conversations" / f"{ref}.corrupt.json").exists()
    assert store.lookup(identify([u("Hello")])) is None


def test_corrupt_index_is_rebuilt(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Hello"), a("Hi")]))
    (tmp_data_dir / "index.json").write_text("[broken", encoding="utf-8")

    assert store.lookup(identify([u("Hello")])).reference == ref


def test_recent_and_listing_are_newest_first(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    older = store.commit(CreateNew([u("first chat")]))
    newer = store.commit(CreateNew([u("second chat")]))

    assert [c.reference for c in store.recent(2)] == [newer, older]
    assert [c.reference for c in store.recent(1)] == [newer]

    store.commit(Append([a("reply")]), older)
    listing = store.list_conversations()
    assert [item["reference"] for item in listing] == [older, newer]
    assert listing[0]["title"] == "first chat"
    assert listing[0]["message_count"] == 2


def test_delete_removes_record_and_index(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Hello")]))

    assert store.delete(ref) is True
    assert store.load(ref) is None
    assert store.lookup(identify([u("Hello")])) is None
    assert store.delete(ref) is False


def test_journal_can_be_disabled(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir), journal=False, render_markdown=False)
    store.record_capture({"plan": "create"})
    assert store.captures() == []
    assert not (tmp_data_dir / "markdown").exists()


def test_concurrent_appends_keep_record_and_index_consistent(tmp_data_dir: Path):
    store = ConversationStore(str(tmp_data_dir))
    ref = store.commit(CreateNew([u("Hello")]))
    barrier = threading.Barrier(8)

    def worker(n: int) -> None:
        barrier.wait()
        store.commit(Append([a(f"reply {n}")]), ref)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    convo = store.load(ref)
    assert len(convo.messages) == 9
    assert sorted(m["content"] for m in convo.messages[1:]) == sorted(f"reply {n}" for n in range(8))
    assert store._read_index() == {identify([u("Hello")]): [ref]}
