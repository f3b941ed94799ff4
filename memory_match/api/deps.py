from __future__ import annotations

from memory_match.service import GameService
from memory_match.settings import load_dotenv_if_present, settings_from_env
from memory_match.store import create_redis


_SERVICE: GameService | None = None


def get_service() -> GameService:
    """Process-wide game service, created on first use.

    Tests override this dependency with a service backed by fakeredis.
    """

    global _SERVICE
    if _SERVICE is None:
        load_dotenv_if_present()
        settings = settings_from_env()
        _SERVICE = GameService(r=create_redis(settings.redis_url), settings=settings)
    return _SERVICE
