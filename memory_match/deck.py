from __future__ import annotations

import logging
import random

from memory_match.exceptions import ConfigError
from memory_match.models import Card, GridConfig


logger = logging.getLogger(__name__)


def normalize_grid(config: GridConfig) -> GridConfig:
    """Return a grid with an even cell count.

    If both dimensions are odd the smaller one (width on a tie) grows by one.
    """

    if config.width <= 0 or config.height <= 0:
        raise ConfigError(f"Grid dimensions must be positive (got {config.width}x{config.height})")

    if config.width % 2 == 0 or config.height % 2 == 0:
        return config

    if config.width <= config.height:
        normalized = GridConfig(width=config.width + 1, height=config.height)
    else:
        normalized = GridConfig(width=config.width, height=config.height + 1)

    logger.info(
        "Both grid dimensions were odd; adjusted %dx%d -> %dx%d",
        config.width,
        config.height,
        normalized.width,
        normalized.height,
    )
    return normalized


def shuffle_in_place(items: list[int], *, rng: random.Random) -> None:
    # Fisher-Yates: walk from the end, swapping with a uniform index in [0, i].
    for i in range(len(items) - 1, 0, -1):
        j = rng.randrange(i + 1)
        items[i], items[j] = items[j], items[i]


def new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def build_deck(config: GridConfig, token_pool_size: int, *, rng: random.Random | None = None) -> list[Card]:
    """Build a shuffled deck for `config`, one Card per grid cell.

    Pair index `i` is shown with face `i % token_pool_size`, so a small pool of faces is
    reused across pairs on large grids.
    """

    if token_pool_size <= 0:
        raise ConfigError(f"token_pool_size must be positive (got {token_pool_size})")

    grid = normalize_grid(config)
    if grid.cell_count == 0:
        raise ConfigError("Grid has no cells")

    total_pairs = grid.cell_count // 2
    pair_indices: list[int] = []
    for i in range(total_pairs):
        pair_indices.extend((i, i))

    shuffle_in_place(pair_indices, rng=rng or random.Random(new_seed()))

    return [
        Card(token_id=pair_index % token_pool_size, position=position)
        for position, pair_index in enumerate(pair_indices)
    ]
