"""Tests for the pull-request ledger."""

import json

import pytest

from prwarden_core.ledger import Ledger
from prwarden_core.models import PullRequestRef
from prwarden_store.json_file import JsonStateStore
from prwarden_store.memory import MemoryStateStore


def _ref(number, repo="acme/api", sha="a" * 40):
    return PullRequestRef.from_full_name(repo, number, head_sha=sha, title=f"PR {number}")


# ---------------------------------------------------------------------------
# observe
# ---------------------------------------------------------------------------


class TestObserve:
    def test_returns_only_unseen_refs(self):
        ledger = Ledger(MemoryStateStore())
        assert ledger.observe({_ref(1), _ref(2)}) == {_ref(1), _ref(2)}
        assert ledger.observe({_ref(1), _ref(2), _ref(3)}) == {_ref(3)}

    def test_ref_is_new_at_most_once_across_cycles(self):
        ledger = Ledger(MemoryStateStore())
        cycles = [{_ref(1)}, {_ref(1), _ref(2)}, {_ref(2)}, set(), {_ref(1), _ref(2), _ref(3)}, {_ref(1)}]
        seen_as_new = []
        for refs in cycles:
            seen_as_new.extend(ledger.observe(refs))
        assert sorted(r.number for r in seen_as_new) == [1, 2, 3]

    def test_head_change_does_not_retrigger(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1, sha="a" * 40)})
        assert ledger.observe({_ref(1, sha="b" * 40)}) == set()

    def test_closed_pr_reappearing_is_not_new(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1)})
        ledger.observe(set())
        assert ledger.observe({_ref(1)}) == set()

    def test_same_number_in_other_repo_is_distinct(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1, repo="acme/api")})
        assert ledger.observe({_ref(1, repo="acme/web")}) == {_ref(1, repo="acme/web")}

    def test_every_observe_is_checkpointed(self):
        store = MemoryStateStore()
        ledger = Ledger(store)
        ledger.observe({_ref(1)})
        assert "acme/api#1" in store.load().entries
        assert store.save_count == 1

    def test_new_entry_records_commit(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(5, sha="c" * 40)})
        entry = ledger.entry(_ref(5))
        assert entry.last_commit_seen == "c" * 40
        assert entry.seen is True
        assert entry.triggered_at is None
        assert entry.trigger_status == "pending"


# ---------------------------------------------------------------------------
# seed
# ---------------------------------------------------------------------------


class TestSeed:
    def test_seeded_refs_are_not_new(self):
        ledger = Ledger(MemoryStateStore())
        current = {_ref(1), _ref(2), _ref(3)}
        assert ledger.seed(current, scopes=["acme/api"]) == 3
        assert ledger.observe(current) == set()
        assert ledger.is_scope_initialized("acme/api")

    def test_seed_after_observe_keeps_existing(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1)})
        assert ledger.seed({_ref(1), _ref(2)}) == 1
        assert ledger.counts()["seeded"] == 1
        assert ledger.counts()["pending"] == 1

    def test_only_later_arrivals_are_new(self):
        ledger = Ledger(MemoryStateStore())
        ledger.seed({_ref(1), _ref(2)}, scopes=["acme/api"])
        assert ledger.observe({_ref(1), _ref(2), _ref(9)}) == {_ref(9)}


# ---------------------------------------------------------------------------
# Trigger outcome and review marks
# ---------------------------------------------------------------------------


class TestOutcomes:
    def test_record_trigger_success(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1)})
        ledger.record_trigger(_ref(1))
        entry = ledger.entry(_ref(1))
        assert entry.trigger_status == "success"
        assert entry.triggered_at is not None
        assert entry.last_error is None

    def test_failed_trigger_is_recorded_and_not_retried(self):
        ledger = Ledger(MemoryStateStore())
        ledger.observe({_ref(1)})
        ledger.record_trigger(_ref(1), error="terminal did not open")
        assert ledger.entry(_ref(1)).trigger_status == "failed"
        assert ledger.entry(_ref(1)).last_error == "terminal did not open"
        assert ledger.observe({_ref(1)}) == set()

    def test_record_trigger_for_unknown_ref_is_ignored(self):
        ledger = Ledger(MemoryStateStore())
        ledger.record_trigger(_ref(7))
        assert ledger.entry(_ref(7)) is None

    def test_mark_reviewed_is_idempotent(self):
        store = MemoryStateStore()
        ledger = Ledger(store)
        ledger.observe({_ref(1)})
        assert ledger.mark_reviewed(_ref(1)) is True
        first = ledger.entry(_ref(1)).reviewed_at
        saves = store.save_count

        assert ledger.mark_reviewed(_ref(1)) is False
        assert ledger.entry(_ref(1)).reviewed_at == first
        assert store.save_count == saves

    def test_mark_reviewed_does_not_affect_triggering(self):
        ledger = Ledger(MemoryStateStore())
        assert ledger.mark_reviewed(_ref(4)) is False
        assert ledger.observe({_ref(4)}) == {_ref(4)}

    def test_record_poll_tracks_failures(self):
        ledger = Ledger(MemoryStateStore())
        ledger.record_poll(error="boom", failed=True)
        ledger.record_poll(error="boom", failed=True)
        assert ledger.state.consecutive_failures == 2
        ledger.record_poll()
        assert ledger.state.consecutive_failures == 0
        assert ledger.state.poll_count == 3
        assert ledger.state.last_error is None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_state_survives_restart(self, tmp_path):
        path = tmp_path / "state.json"
        Ledger(JsonStateStore(path)).observe({_ref(1), _ref(2)})

        restarted = Ledger(JsonStateStore(path))
        assert restarted.observe({_ref(1), _ref(2), _ref(3)}) == {_ref(3)}

    def test_corrupt_state_degrades_to_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        ledger = Ledger(JsonStateStore(path))
        assert ledger.recovered_from_corruption is True
        assert len(ledger) == 0
        assert ledger.observe({_ref(1)}) == {_ref(1)}
        assert (tmp_path / "state.json.corrupt").read_text() == "{not json"
        assert "acme/api#1" in json.loads(path.read_text())["entries"]

    def test_reload_picks_up_other_writers(self, tmp_path):
        path = tmp_path / "state.json"
        stale = Ledger(JsonStateStore(path))
        Ledger(JsonStateStore(path)).observe({_ref(1)})

        assert _ref(1) not in stale
        stale.reload()
        assert _ref(1) in stale
        assert stale.observe({_ref(1), _ref(2)}) == {_ref(2)}

    def test_deferred_load(self, tmp_path):
        path = tmp_path / "state.json"
        Ledger(JsonStateStore(path)).observe({_ref(1)})

        ledger = Ledger(JsonStateStore(path), load=False)
        assert len(ledger) == 0
        ledger.reload()
        assert len(ledger) == 1

    def test_recovery_flag_survives_reload(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        ledger = Ledger(JsonStateStore(path))
        ledger.reload()
        assert ledger.recovered_from_corruption is True

    def test_read_only_ledger_leaves_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        ledger = Ledger(JsonStateStore(path), read_only=True)
        assert ledger.recovered_from_corruption is True
        assert path.read_text() == "{not json"
        assert not (tmp_path / "state.json.corrupt").exists()
        with pytest.raises(RuntimeError):
            ledger.observe({_ref(1)})
