"""End-to-end CLI runs against a temporary database seeded from the example fixture."""

import json
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from main import main
from rhood.core.db import init_db

EXAMPLE_SEED = Path(__file__).parent.parent.parent / "config" / "seed.example.yaml"


@pytest.fixture()
def config_path(tmp_path: Path) -> str:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "database": {"path": str(tmp_path / "rhood.db")},
        "applications": {"daily_limit": 5},
        "ai": {"enabled": False},
    }))
    return str(path)


@pytest.fixture()
def seeded(config_path: str, capsys) -> str:  # type: ignore[no-untyped-def]
    main(["init-db", "--config", config_path])
    main(["seed", "--file", str(EXAMPLE_SEED), "--config", config_path])
    capsys.readouterr()
    return config_path


class TestCLI:
    def test_seed_output(self, config_path: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["seed", "--file", str(EXAMPLE_SEED), "--config", config_path])
        out = capsys.readouterr().out
        assert "2 profiles" in out
        assert "3 mixes" in out

    def test_recommend_cold_start_skips_own_mixes(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["recommend", "--user", "dj-nova", "--config", seeded])
        out = capsys.readouterr().out
        assert "2 recommendations for dj-nova" in out
        assert "First Steps" not in out

    def test_match(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["match", "--user", "dj-nova", "--config", seeded])
        out = capsys.readouterr().out
        assert "2 matches for dj-nova" in out
        assert out.index("Friday Warm-up") < out.index("Late Techno Set")

    def test_ai_match_disabled_json(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["ai-match", "--user", "dj-nova", "--json", "--config", seeded])
        matches = json.loads(capsys.readouterr().out)
        assert [m["ranking"] for m in matches] == [1, 2]
        assert all(m["match_type"] == "algorithmic_fallback" for m in matches)

    def test_apply_then_duplicate(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["apply", "--user", "dj-nova", "--opportunity", "gig-fabric", "--config", seeded])
        assert "4 applications left today" in capsys.readouterr().out

        with pytest.raises(SystemExit) as exc_info:
            main(["apply", "--user", "dj-nova", "--opportunity", "gig-fabric",
                  "--config", seeded])
        assert exc_info.value.code == 1
        assert "already applied" in capsys.readouterr().err

    def test_apply_without_mix(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(SystemExit):
            main(["apply", "--user", "nobody", "--opportunity", "gig-fabric",
                  "--config", seeded])
        assert "Upload at least one mix" in capsys.readouterr().err

    def test_rebuild_and_stats(self, seeded: str, capsys) -> None:  # type: ignore[no-untyped-def]
        main(["rebuild-embeddings", "--config", seeded])
        assert "0 users and 3 mixes" in capsys.readouterr().out

        main(["stats", "--user", "dj-nova", "--config", seeded])
        stats = json.loads(capsys.readouterr().out)
        assert stats["listening"]["total_listens"] == 0
        assert stats["matchmaking"]["total_matches"] == 0

    def test_missing_config(self, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(SystemExit) as exc_info:
            main(["init-db", "--config", str(tmp_path / "missing.yaml")])
        assert exc_info.value.code == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_missing_seed_file(self, config_path: str, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(SystemExit):
            main(["seed", "--file", str(tmp_path / "none.yaml"), "--config", config_path])
        assert "Seed file not found" in capsys.readouterr().err

    def test_connection_closed_after_error(self, seeded: str) -> None:
        opened: list[sqlite3.Connection] = []

        def _tracking_init_db(path: str) -> sqlite3.Connection:
            conn = init_db(path)
            opened.append(conn)
            return conn

        with (
            patch("main.init_db", side_effect=_tracking_init_db),
            pytest.raises(SystemExit),
        ):
            main(["apply", "--user", "nobody", "--opportunity", "gig-fabric",
                  "--config", seeded])
        assert len(opened) == 1
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")
