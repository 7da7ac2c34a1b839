"""
Unit tests for result assembly: fault isolation, ordering and the cap.
"""

from datetime import datetime, timedelta, timezone

from app.models.mail import NormalizedMessage, RawMessage
from app.services.assembler import assemble, normalize_batch

BASE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _make_normalized(uid: int, days: int | None) -> NormalizedMessage:
    """A summary dated BASE + days (or undated when days is None)."""
    date = BASE + timedelta(days=days) if days is not None else None
    return NormalizedMessage(uid=uid, date=date, subject=f"Message {uid}")


def _make_raw(uid: int, days: int = 0) -> RawMessage:
    date = (BASE + timedelta(days=days)).strftime("%a, %d %b %Y %H:%M:%S +0000")
    buffer = (
        f"From: sender{uid}@example.com\r\n"
        f"Subject: Message {uid}\r\n"
        f"Date: {date}\r\n"
        f"\r\n"
        f"Body of {uid}\r\n"
    ).encode()
    return RawMessage(uid=uid, seq=uid, buffer=buffer)


class TestAssemble:
    """Test ordering and truncation."""

    def test_newest_first(self):
        messages = [_make_normalized(1, 0), _make_normalized(2, 5), _make_normalized(3, 2)]

        assert [m.uid for m in assemble(messages)] == [2, 3, 1]

    def test_dates_are_non_increasing(self):
        messages = [_make_normalized(i, (i * 7) % 5) for i in range(1, 11)]
        ordered = assemble(messages)

        for earlier, later in zip(ordered, ordered[1:]):
            assert earlier.date >= later.date

    def test_missing_dates_sort_last(self):
        """Undated messages come after every dated one."""
        messages = [_make_normalized(1, None), _make_normalized(2, 0), _make_normalized(3, None)]

        assert [m.uid for m in assemble(messages)] == [2, 1, 3]

    def test_equal_dates_keep_fetch_order(self):
        """The sort is stable for ties."""
        messages = [_make_normalized(uid, 1) for uid in (5, 3, 9)]

        assert [m.uid for m in assemble(messages)] == [5, 3, 9]

    def test_limit_applied_after_sort(self):
        """The cap keeps the newest messages, not the first fetched."""
        messages = [_make_normalized(i, i) for i in range(1, 6)]

        assert [m.uid for m in assemble(messages, 3)] == [5, 4, 3]

    def test_no_limit(self):
        messages = [_make_normalized(i, i) for i in range(1, 6)]
        assert len(assemble(messages)) == 5

    def test_empty(self):
        assert assemble([], 10) == []


class TestNormalizeBatch:
    """Test per-message fault isolation."""

    def test_corrupt_message_is_skipped(self):
        """Ten messages with one corrupt yields nine results."""
        raws = [_make_raw(uid, uid) for uid in range(1, 11)]
        raws[4] = RawMessage(uid=5, seq=5, buffer=b"")

        results = normalize_batch(raws)

        assert len(results) == 9
        assert 5 not in [m.uid for m in results]

    def test_other_messages_unchanged(self):
        """A failure never alters the surviving messages."""
        good = [_make_raw(uid, uid) for uid in (1, 2)]
        alone = normalize_batch(good)
        mixed = normalize_batch([good[0], RawMessage(uid=99, buffer=b""), good[1]])

        assert mixed == alone

    def test_all_corrupt(self):
        assert normalize_batch([RawMessage(uid=1, buffer=b"")]) == []
