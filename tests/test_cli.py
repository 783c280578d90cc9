"""Unit tests for the contactsync command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from contactsync import cli
from contactsync.config import get_settings

from .conftest import SourceDouble

pytestmark = pytest.mark.unit


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONTACTSYNC_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CONTACTSYNC_DEBOUNCE_SECONDS", "0.01")
    monkeypatch.delenv("GOOGLE_REFRESH_TOKEN", raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def _seed(data_dir: Path, *records) -> None:
    payload = [json.loads(record.model_dump_json()) for record in records]
    (data_dir / "contacts.json").write_text(json.dumps(payload))


def _saved(data_dir: Path) -> list[dict]:
    return json.loads((data_dir / "contacts.json").read_text())


class TestDuplicates:
    def test_lists_ranked_pairs(self, data_dir, make_record):
        _seed(
            data_dir,
            make_record("Jane Doe", id="a", phones=("555-1234",)),
            make_record("Jane Doe", id="b", phones=("(555) 1234",)),
            make_record("Someone Else", id="c"),
        )

        result = CliRunner().invoke(cli.main, ["duplicates"])

        assert result.exit_code == 0, result.output
        assert "Found 1 possible duplicates" in result.output
        assert "Exact name match, Matching phone numbers" in result.output

    def test_nothing_to_report(self, data_dir):
        result = CliRunner().invoke(cli.main, ["duplicates"])

        assert result.exit_code == 0
        assert "No duplicates found." in result.output


class TestMerge:
    def test_merges_and_persists(self, data_dir, make_record):
        _seed(
            data_dir,
            make_record("Jane Doe", id="a", phones=("555-1234",)),
            make_record("Jane Doe", id="b", phones=("(555) 1234",), emails=("jane@x.com",)),
        )

        result = CliRunner().invoke(cli.main, ["merge", "a", "b"])

        assert result.exit_code == 0, result.output
        (saved,) = _saved(data_dir)
        assert saved["id"] == "a"
        assert len(saved["phone_numbers"]) == 1
        assert saved["history"][-1]["note"] == "Merged with Jane Doe"

    def test_unknown_id(self, data_dir, make_record):
        _seed(data_dir, make_record("Jane Doe", id="a"))

        result = CliRunner().invoke(cli.main, ["merge", "a", "zzz"])

        assert result.exit_code == 1
        assert "Contact not found: zzz" in result.output


class TestSync:
    def test_requires_google_credentials(self, data_dir):
        result = CliRunner().invoke(cli.main, ["sync"])

        assert result.exit_code == 1
        assert "GOOGLE_REFRESH_TOKEN" in result.output

    def test_conflicting_flags(self, data_dir):
        result = CliRunner().invoke(cli.main, ["sync", "--pull-only", "--push-only"])

        assert result.exit_code == 1

    def test_pull_then_push(self, data_dir, make_record, monkeypatch):
        source = SourceDouble()
        monkeypatch.setattr(cli, "_build_sources", lambda settings: [source])
        _seed(data_dir, make_record("Local", id="a"))

        result = CliRunner().invoke(cli.main, ["sync"])

        assert result.exit_code == 0, result.output
        assert "double pull: 0 succeeded, 0 failed" in result.output
        assert "double push: 1 succeeded, 0 failed" in result.output
        (saved,) = _saved(data_dir)
        assert saved["external_ids"] == {"double": "double-1"}

    def test_push_only_reports_failures(self, data_dir, make_record, monkeypatch):
        source = SourceDouble()
        source.online = False
        monkeypatch.setattr(cli, "_build_sources", lambda settings: [source])
        _seed(data_dir, make_record("Local", id="a"))

        result = CliRunner().invoke(cli.main, ["sync", "--push-only"])

        assert result.exit_code == 1
        assert "double push: 0 succeeded, 1 failed" in result.output


class TestStatus:
    def test_shows_stats(self, data_dir, make_record):
        _seed(
            data_dir,
            make_record("A", id="a", is_favorite=True),
            make_record("B", id="b", group="Work"),
        )

        result = CliRunner().invoke(cli.main, ["status"])

        assert result.exit_code == 0, result.output
        assert "Total contacts: 2" in result.output
        assert "Favorites: 1" in result.output
        assert "No sync sources configured." in result.output
