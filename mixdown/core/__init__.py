from mixdown.core.config import settings
from mixdown.core.db import get_db

__all__ = ["settings", "get_db"]
