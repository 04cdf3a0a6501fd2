"""
Tests fuer ObservationStore - Rolling Window, Sortierung, Listener.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from foresight.models import Observation, ObservationKind
from foresight.observation_store import ObservationStore

from factories import START, activity, environment


@pytest.fixture
def store(clock):
    return ObservationStore(retention_days=90, clock=clock)


class TestRecord:
    """Tests fuer record()."""

    def test_stores_copy(self, store):
        payload = {"activity": "cooking"}
        original = Observation(START, ObservationKind.ACTIVITY, payload)
        stored = store.record(original)

        payload["activity"] = "sleeping"
        assert stored is not original
        assert store.all()[0].payload["activity"] == "cooking"

    def test_keeps_timestamp_order(self, store):
        store.record(activity(START - timedelta(hours=1), "b"))
        store.record(activity(START - timedelta(hours=3), "a"))
        store.record(activity(START - timedelta(hours=2), "c"))
        names = [o.payload["activity"] for o in store.all()]
        assert names == ["a", "c", "b"]

    def test_drops_observation_outside_retention(self, store):
        assert store.record(activity(START - timedelta(days=91), "cooking")) is None
        assert len(store) == 0

    def test_notifies_listener(self, store):
        listener = MagicMock()
        store.set_listeners(on_record=listener)
        stored = store.record(activity(START, "cooking"))
        listener.assert_called_once_with(stored)

    def test_latest(self, store):
        assert store.latest is None
        store.record(activity(START - timedelta(hours=1), "a"))
        store.record(activity(START, "b"))
        assert store.latest.payload["activity"] == "b"


class TestRetention:
    """Tests fuer purge()."""

    def test_purge_after_clock_moves(self, store, clock):
        store.record(activity(START - timedelta(days=89), "old"))
        store.record(activity(START, "new"))
        clock.advance(days=2)
        assert store.purge() == 1
        assert [o.payload["activity"] for o in store.all()] == ["new"]

    def test_record_purges_expired(self, store, clock):
        store.record(activity(START - timedelta(days=89), "old"))
        clock.advance(days=2)
        store.record(activity(clock.now, "new"))
        assert len(store) == 1


class TestImportHistory:
    """Tests fuer import_history()."""

    def test_counts_only_retained(self, store):
        observations = [
            activity(START - timedelta(days=1), "a"),
            activity(START - timedelta(days=100), "ancient"),
            activity(START - timedelta(days=3), "b"),
            activity(START - timedelta(days=2), "c"),
        ]
        assert store.import_history(observations) == 3
        assert [o.payload["activity"] for o in store.all()] == ["b", "c", "a"]

    def test_import_listener_gets_sorted_window(self, store):
        on_import = MagicMock()
        on_record = MagicMock()
        store.set_listeners(on_record=on_record, on_import=on_import)

        store.import_history([activity(START, "b"), activity(START - timedelta(hours=1), "a")])

        on_record.assert_not_called()
        window = on_import.call_args[0][0]
        assert [o.payload["activity"] for o in window] == ["a", "b"]


class TestQueries:

    def test_since(self, store):
        store.record(activity(START - timedelta(hours=5), "a"))
        store.record(activity(START - timedelta(hours=1), "b"))
        assert [o.payload["activity"] for o in store.since(START - timedelta(hours=2))] == ["b"]

    def test_of_kind(self, store):
        store.record(activity(START, "cooking"))
        store.record(environment(START, temperature=21.0))
        assert len(store.of_kind(ObservationKind.ENVIRONMENT)) == 1

    def test_restore_does_not_notify(self, store):
        listener = MagicMock()
        store.set_listeners(on_record=listener, on_import=listener)
        store.restore([activity(START, "cooking")])
        assert len(store) == 1
        listener.assert_not_called()
