import argparse
import json

import pytest

from beacon.jobs import run_batch
from beacon.jobs.check_batch import PollResult
from beacon.jobs.submit_batch import SubmitResult


class SeedStore:
    def __init__(self):
        self.rows = []
        self.schema_calls = 0

    def ensure_schema(self):
        self.schema_calls += 1

    def insert_targets(self, rows):
        rows = list(rows)
        self.rows.extend(rows)
        return len(rows)


def test_seed_targets_reads_city_keyed_file(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text(
        json.dumps({"atlanta": [{"name": "Octane Coffee", "location": "1009 Marietta St NW", "zipCode": "30318"}]}),
        encoding="utf-8",
    )
    store = SeedStore()

    inserted = run_batch.seed_targets(store, path)

    assert inserted == 1
    assert store.rows[0]["target_id"] == "octane_coffee_30318"
    assert store.rows[0]["city"] == "atlanta"


def test_seed_targets_rejects_non_object(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        run_batch.seed_targets(SeedStore(), path)


def test_bundled_seed_file_is_valid():
    store = SeedStore()
    assert run_batch.seed_targets(store, run_batch.DEFAULT_SEED_FILE) > 0


def test_build_parser_defaults(monkeypatch):
    def no_settings():
        raise AssertionError("settings must not be loaded while building the parser")

    monkeypatch.setattr(run_batch, "get_settings", no_settings)
    parser = run_batch.build_parser()

    args = parser.parse_args(["submit"])
    assert isinstance(parser, argparse.ArgumentParser)
    assert args.command == "submit"
    assert args.limit is None
    assert parser.parse_args(["submit", "--limit", "12"]).limit == 12

    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_run_command_dispatches(monkeypatch):
    calls = []

    def fake_submit(store, limit):
        calls.append(("submit", limit))
        return SubmitResult(batch_id="batch_1", target_count=limit)

    def fake_check(store):
        calls.append(("poll",))
        return PollResult(pending=0, processed=0, closed=0)

    monkeypatch.setattr(run_batch, "run_submit_job", fake_submit)
    monkeypatch.setattr(run_batch, "run_check_job", fake_check)
    store = SeedStore()

    run_batch.run_command(argparse.Namespace(command="init-db"), store)
    run_batch.run_command(argparse.Namespace(command="submit", limit=5), store)
    run_batch.run_command(argparse.Namespace(command="poll"), store)

    assert store.schema_calls == 3
    assert calls == [("submit", 5), ("poll",)]
