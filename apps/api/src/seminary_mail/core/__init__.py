"""
Core module - Configuration, Redis, permissions, scheduling and email delivery.
"""

from seminary_mail.core.config import get_settings, settings
from seminary_mail.core.redis import close_redis, get_redis, init_redis

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
]
