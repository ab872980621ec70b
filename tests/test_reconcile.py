from __future__ import annotations

from chat_ledger.reconcile import (
    Append,
    CreateNew,
    Replace,
    Unrelated,
    is_continuation,
    is_edited_opening,
    normalize_content,
    reconcile,
)

from conftest import a, u


# -----------------------------
# Properties
# -----------------------------
def test_identical_capture_is_an_empty_append():
    convo = [u("Hello"), a("Hi"), u("How are you?"), a("Fine")]
    plan = reconcile(convo, list(convo))
    assert plan == Append([])
    assert plan.is_noop


def test_monotonic_growth():
    existing = [u("Plan a trip"), a("Where to?")]
    for tail in ([], [u("Lisbon")], [u("Lisbon"), a("Great choice"), u("Budget?")]):
        assert reconcile(existing, existing + tail) == Append(tail)


def test_edit_detection_on_opening_prompt():
    existing = [u("m0"), a("m1"), u("m2")]
    incoming = [u("m0 edited"), a("m1"), u("m2")]
    assert reconcile(existing, incoming) == Replace(incoming)


def test_no_merge_when_only_the_first_line_is_shared():
    existing = [u("Hello"), a("Python is a language."), u("Tell me more"), a("It has classes.")]
    incoming = [u("Hello"), a("The weather is sunny."), u("Will it rain?"), a("Not today.")]
    plan = reconcile(existing, incoming)
    assert not isinstance(plan, (Append, Replace))
    assert isinstance(plan, Unrelated)


# -----------------------------
# Scenarios
# -----------------------------
def test_simple_continuation():
    existing = [u("Hello"), a("Hi")]
    incoming = [u("Hello"), a("Hi"), u("How are you?"), a("Fine")]
    assert reconcile(existing, incoming) == Append([u("How are you?"), a("Fine")])


def test_edited_opening_prompt():
    existing = [u("Build X"), a("Done")]
    incoming = [u("Build X and Y"), a("Done")]
    assert reconcile(existing, incoming) == Replace(incoming)


def test_unrelated_capture():
    existing = [u("Hello"), a("Hi")]
    incoming = [u("Goodbye"), a("See you")]
    assert reconcile(existing, incoming) == Unrelated(incoming)


# -----------------------------
# Tiers and edge cases
# -----------------------------
def test_nothing_stored_creates_new():
    incoming = [u("Hello")]
    assert reconcile(None, incoming) == CreateNew(incoming)
    assert reconcile([], incoming) == CreateNew(incoming)


def test_formatting_only_differences_still_match():
    existing = [u("Hello   world\n\n\n  bye"), a("ok\r\n")]
    incoming = [u("Hello world\nbye"), a("ok"), u("next")]
    assert reconcile(existing, incoming) == Append([u("next")])


def test_role_mismatch_is_not_a_match():
    assert reconcile([u("same")], [a("same")]) == Unrelated([a("same")])


def test_edit_with_new_turns_and_shorter_capture():
    existing = [u("prompt1"), a("response1"), u("prompt2"), a("response2")]
    grown = [u("prompt1-edited"), a("response1"), u("prompt2"), a("response2"), u("prompt3")]
    shorter = [u("prompt1-edited"), a("response1")]
    assert reconcile(existing, grown) == Replace(grown)
    assert reconcile(existing, shorter) == Replace(shorter)


def test_edit_requires_same_opening_role():
    existing = [u("m0"), a("m1")]
    incoming = [a("m0 edited"), a("m1")]
    assert not is_edited_opening(existing, incoming)
    assert isinstance(reconcile(existing, incoming), Unrelated)


def test_capture_starting_mid_conversation_appends():
    existing = [u("q1"), a("r1"), u("q2"), a("r2")]
    incoming = [a("r1"), u("q2"), a("r2"), u("q3"), a("r3")]
    assert reconcile(existing, incoming) == Append([u("q3"), a("r3")])


def test_lenient_window_shrinks_to_shortest_side():
    existing = [u("q1"), a("r1")]
    incoming = [u("q1"), a("r1 changed")]
    # strict prefix fails, opening unchanged, window of 2 does not line up
    assert isinstance(reconcile(existing, incoming), Unrelated)


def test_lenient_window_can_be_disabled():
    existing = [u("q1"), a("r1"), u("q2"), a("r2")]
    incoming = [a("r1"), u("q2"), a("r2"), u("q3")]
    assert isinstance(reconcile(existing, incoming, lenient_window=0), Unrelated)


def test_strict_prefix_wins_over_edit_check():
    existing = [u("same"), a("reply")]
    assert is_continuation(existing, existing + [u("more")])
    assert not is_edited_opening(existing, existing + [u("more")])
    assert reconcile(existing, existing + [u("more")]) == Append([u("more")])


def test_normalize_content_never_raises():
    assert normalize_content(None) == ""
    assert normalize_content(42) == "42"
    assert normalize_content("a \t b\r\n\r\n\n c ") == "a b\nc"
    assert normalize_content("\x00� binary\x10") == "\x00� binary\x10"
