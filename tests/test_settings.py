from __future__ import annotations

from pathlib import Path

import pytest

from memory_match.settings import GameSettings, load_dotenv_if_present, settings_from_env


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)
    s = settings_from_env()
    assert s == GameSettings()
    assert (s.grid.width, s.grid.height) == (4, 4)
    assert s.token_pool_size == 8
    assert s.snapshot_max_age_days == 30


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMORY_MATCH_GRID_WIDTH", "6")
    monkeypatch.setenv("MEMORY_MATCH_TOKEN_POOL_SIZE", "12")
    monkeypatch.setenv("MEMORY_MATCH_MATCH_CHECK_DELAY", "0.25")
    monkeypatch.setenv("MEMORY_MATCH_PREVIEW_SECONDS", "")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")

    s = settings_from_env()
    assert s.grid_width == 6
    assert s.grid_height == 4
    assert s.token_pool_size == 12
    assert s.match_check_delay == 0.25
    assert s.preview_seconds == 3.0
    assert s.redis_url == "redis://cache:6380/2"


def test_dotenv_does_not_override_exported_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("MEMORY_MATCH_GRID_WIDTH=8\nMEMORY_MATCH_GRID_HEIGHT=2\n")
    monkeypatch.setenv("MEMORY_MATCH_GRID_WIDTH", "6")
    # Registered with monkeypatch first so the value dotenv writes is removed afterwards.
    monkeypatch.setenv("MEMORY_MATCH_GRID_HEIGHT", "")
    monkeypatch.delenv("MEMORY_MATCH_GRID_HEIGHT")

    load_dotenv_if_present(project_root=tmp_path)

    s = settings_from_env()
    assert (s.grid_width, s.grid_height) == (6, 2)
