from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from memory_match.models import GridConfig


ENV_PREFIX = "MEMORY_MATCH_"


@dataclass(frozen=True, slots=True)
class GameSettings:
    grid_width: int = 4
    grid_height: int = 4
    # Number of distinct faces available; pairs beyond this reuse faces.
    token_pool_size: int = 8

    preview_seconds: float = 3.0
    post_preview_delay: float = 0.5
    # Time both faces stay visible before the pair is judged.
    match_check_delay: float = 0.5
    flip_duration: float = 0.4

    autosave_interval: float = 30.0
    clock_interval: float = 1.0
    snapshot_max_age_days: int = 30

    redis_url: str = "redis://localhost:6379/0"

    @property
    def grid(self) -> GridConfig:
        return GridConfig(width=self.grid_width, height=self.grid_height)


def _env(name: str) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name}")


def _int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


def _float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def load_dotenv_if_present(*, project_root: Path | None = None) -> None:
    """Load a repo-level `.env` without overriding variables already exported."""

    root = project_root or Path(__file__).resolve().parents[1]
    env_path = root / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


def settings_from_env() -> GameSettings:
    d = GameSettings()
    return GameSettings(
        grid_width=_int("GRID_WIDTH", d.grid_width),
        grid_height=_int("GRID_HEIGHT", d.grid_height),
        token_pool_size=_int("TOKEN_POOL_SIZE", d.token_pool_size),
        preview_seconds=_float("PREVIEW_SECONDS", d.preview_seconds),
        post_preview_delay=_float("POST_PREVIEW_DELAY", d.post_preview_delay),
        match_check_delay=_float("MATCH_CHECK_DELAY", d.match_check_delay),
        flip_duration=_float("FLIP_DURATION", d.flip_duration),
        autosave_interval=_float("AUTOSAVE_INTERVAL", d.autosave_interval),
        clock_interval=_float("CLOCK_INTERVAL", d.clock_interval),
        snapshot_max_age_days=_int("SNAPSHOT_MAX_AGE_DAYS", d.snapshot_max_age_days),
        # Shared with other tools on the same host, so no prefix.
        redis_url=os.environ.get("REDIS_URL", d.redis_url),
    )
