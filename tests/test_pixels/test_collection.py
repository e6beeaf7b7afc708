"""Tests for PixelCollection counters, updates and eviction."""

import pytest

from pixeltrack.pixels.collection import ClassificationPolicy, PixelCollection
from pixeltrack.pixels.parser import parse_pixel

BASE = "https://sp.analytics.yahoo.com/sp.pl"
OK_IMAGE = f"{BASE}?a=10000&.yp=555"
BAD_IMAGE = f"{BASE}?a=10000"
WARN_SCRIPT = f"{BASE}?a=10000&.yp=25984&ea=ViewProduct&et=custom"


def _record(url, resource_type="image", request_id="r1", created_at=0.0):
    return parse_pixel(url, resource_type, request_id=request_id, context_id=1, created_at=created_at)


@pytest.fixture
def collection():
    return PixelCollection(context_id=1)


class TestAdd:
    def test_counters_start_empty(self, collection):
        assert collection.is_empty
        assert collection.error_count == 0
        assert collection.warning_count == 0
        assert collection.duplicate_count == 1

    def test_error_and_warning_counts(self, collection):
        collection.add(_record(OK_IMAGE, request_id="r1"))
        collection.add(_record(BAD_IMAGE, request_id="r2"))
        collection.add(_record(WARN_SCRIPT, "script", request_id="r3"))

        assert len(collection) == 3
        assert collection.error_count == 1
        assert collection.warning_count == 1

    def test_duplicate_count_grows_once_per_insertion(self, collection):
        collection.add(_record(OK_IMAGE, request_id="r1"))
        assert collection.duplicate_count == 1
        collection.add(_record(OK_IMAGE, request_id="r2"))
        assert collection.duplicate_count == 2
        collection.add(_record(OK_IMAGE, request_id="r3"))
        assert collection.duplicate_count == 3
        collection.add(_record(BAD_IMAGE, request_id="r4"))
        assert collection.duplicate_count == 3

    def test_records_keep_arrival_order(self, collection):
        for request_id in ("c", "a", "b"):
            collection.add(_record(OK_IMAGE, request_id=request_id))
        assert [r.request_id for r in collection.records] == ["c", "a", "b"]


class TestUpdates:
    def test_mark_answered_rounds_to_two_decimals(self, collection):
        collection.add(_record(OK_IMAGE, created_at=1000.0))
        record = collection.mark_answered("r1", 1033.3333)
        assert record.elapsed_ms == 33.33

    def test_mark_answered_last_write_wins(self, collection):
        collection.add(_record(OK_IMAGE, created_at=1000.0))
        collection.mark_answered("r1", 1010.0)
        collection.mark_answered("r1", 1020.0)
        assert collection.find("r1").elapsed_ms == 20.0

    def test_answer_after_failure_keeps_error(self, collection):
        collection.add(_record(OK_IMAGE, created_at=1000.0))
        collection.mark_failed("r1")
        collection.mark_answered("r1", 1020.0)
        assert collection.find("r1").elapsed_ms == "Error"

    def test_non_fatal_failure_keeps_timing(self, collection):
        collection.add(_record(OK_IMAGE, created_at=1000.0))
        collection.mark_answered("r1", 1005.0)
        record = collection.mark_failed("r1", non_fatal=True)
        assert record.error_flag is True
        assert record.elapsed_ms == 5.0

    def test_unknown_request_is_none(self, collection):
        collection.add(_record(OK_IMAGE))
        assert collection.mark_answered("nope", 10.0) is None
        assert collection.mark_failed("nope") is None

    def test_failure_does_not_count_by_default(self, collection):
        collection.add(_record(OK_IMAGE))
        collection.mark_failed("r1")
        assert collection.error_count == 0

    def test_failure_counts_when_policy_says_so(self):
        collection = PixelCollection(
            context_id=1, policy=ClassificationPolicy(count_transport_errors=True)
        )
        collection.add(_record(OK_IMAGE))
        collection.mark_failed("r1")
        assert collection.error_count == 1


class TestPrune:
    def test_prune_respects_damper(self, collection):
        for request_id, created_at in (("r1", 1000.0), ("r2", 6000.0), ("r3", 8000.0)):
            collection.add(_record(OK_IMAGE, request_id=request_id, created_at=created_at))

        removed = collection.prune(now_ms=12000.0, damper_ms=5000)

        assert removed == 2
        assert [r.request_id for r in collection.records] == ["r3"]
        assert collection.duplicate_count == 1

    def test_prune_boundary_is_inclusive(self, collection):
        collection.add(_record(OK_IMAGE, created_at=1000.0))
        assert collection.prune(now_ms=6000.0, damper_ms=5000) == 1
        assert collection.is_empty

    def test_prune_recounts(self, collection):
        collection.add(_record(BAD_IMAGE, request_id="r1", created_at=0.0))
        collection.add(_record(WARN_SCRIPT, "script", request_id="r2", created_at=0.0))
        collection.add(_record(OK_IMAGE, request_id="r3", created_at=9000.0))

        collection.prune(now_ms=10000.0, damper_ms=5000)

        assert collection.error_count == 0
        assert collection.warning_count == 0

    def test_prune_nothing_old_enough(self, collection):
        collection.add(_record(OK_IMAGE, created_at=9000.0))
        assert collection.prune(now_ms=10000.0, damper_ms=5000) == 0
        assert len(collection) == 1


class TestReadSide:
    def test_groups_use_missing_label(self, collection):
        collection.add(_record(OK_IMAGE, request_id="r1"))
        collection.add(_record(f"{BASE}?a=1", request_id="r2"))
        groups = collection.groups()
        assert [g.pixel_id for g in groups] == ["555", "Missing"]

    def test_snapshot_is_detached(self, collection):
        collection.add(_record(OK_IMAGE, created_at=0.0))
        snapshot = collection.snapshot()
        collection.mark_answered("r1", 50.0)
        collection.add(_record(OK_IMAGE, request_id="r2"))

        assert snapshot.records[0].elapsed_ms is None
        assert len(snapshot) == 1
