"""Tests for the command-line interface."""

import json

import pytest

from vidcatalog import db
from vidcatalog.cli import main
from tests.test_patterns import FIRST_SEGMENT_TITLES


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "catalog.db")


def write_uploads(path, uploads):
    path.write_text("\n".join(json.dumps(u) for u in uploads) + "\n")
    return str(path)


UPLOADS = [
    {"source_video_id": "v1", "title": "Heat (1995) FULL MOVIE | Crime Thriller Classic",
     "view_count": 1_000_000, "is_embeddable": True},
    {"source_video_id": "v2", "title": "Heat (1995) [HD]", "view_count": 100},
    {"source_video_id": "v3", "title": "Jaws (1975)", "view_count": 5000},
]


class TestIngestCommand:
    def test_ingest_and_status(self, tmp_path, db_path, capsys):
        uploads = write_uploads(tmp_path / "uploads.jsonl", UPLOADS)
        main(["--db", db_path, "ingest", uploads])
        out = capsys.readouterr().out
        assert "Ingested: 3" in out

        main(["--db", db_path, "status"])
        out = capsys.readouterr().out
        assert "Work groups:          2" in out
        assert "Primary copies:       2" in out

    def test_bad_lines_skipped(self, tmp_path, db_path, capsys):
        path = tmp_path / "bad.jsonl"
        path.write_text('{"source_video_id": "v1", "title": "Heat"}\n'
                        '{oops\n'
                        '[1, 2]\n'
                        '{"source_video_id": "v2", "title": "Jaws (1975)"}\n')
        main(["--db", db_path, "ingest", str(path)])
        out = capsys.readouterr().out
        assert "bad.jsonl:2: invalid JSON" in out
        assert "bad.jsonl:3: expected a JSON object" in out
        assert "Ingested: 2" in out
        assert "Errors:    2" in out

        conn = db.get_connection(db_path)
        assert db.copy_by_video_id(conn, "v2") is not None
        conn.close()


class TestMaintenanceCommands:
    def _seed(self, tmp_path, db_path):
        main(["--db", db_path, "ingest", write_uploads(tmp_path / "u.jsonl", UPLOADS)])
        conn = db.get_connection(db_path)
        group_id = db.copy_by_video_id(conn, "v1")["group_id"]
        conn.close()
        return group_id

    def test_versions(self, tmp_path, db_path, capsys):
        group_id = self._seed(tmp_path, db_path)
        capsys.readouterr()
        main(["--db", db_path, "versions", str(group_id)])
        out = capsys.readouterr().out
        assert "Heat (1995)" in out
        assert "Backups available: 1" in out

    def test_versions_unknown_group(self, db_path):
        with pytest.raises(SystemExit):
            main(["--db", db_path, "versions", "999"])

    def test_failover(self, tmp_path, db_path, capsys):
        group_id = self._seed(tmp_path, db_path)
        main(["--db", db_path, "failover", str(group_id)])
        assert "promoted copy" in capsys.readouterr().out

    def test_fix_titles_dry_run(self, tmp_path, db_path, capsys):
        self._seed(tmp_path, db_path)
        main(["--db", db_path, "fix-titles", "--dry-run"])
        assert "0 updated" in capsys.readouterr().out

    def test_analyze_channel(self, tmp_path, db_path, capsys):
        titles = tmp_path / "titles.txt"
        titles.write_text("\n".join(FIRST_SEGMENT_TITLES))
        main(["--db", db_path, "analyze-channel", "chan-1", str(titles)])
        assert "first_segment" in capsys.readouterr().out

    def test_merge_and_resweep(self, tmp_path, db_path, capsys):
        group_id = self._seed(tmp_path, db_path)
        main(["--db", db_path, "merge-groups"])
        main(["--db", db_path, "resweep", str(group_id)])
        out = capsys.readouterr().out
        assert "0 groups merged" in out
        assert f"Group {group_id}: primary is copy" in out


class TestParser:
    def test_no_command(self):
        with pytest.raises(SystemExit):
            main([])
