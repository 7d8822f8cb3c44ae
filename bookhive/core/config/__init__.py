"""
Configuration Module

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: TTL classes, key namespaces, limit classes, queue and job names

Usage:
------
```python
from bookhive.core.config import get_settings
from bookhive.core.config.constants import CacheTTL, QueueName

settings = get_settings()
url = settings.redis.REDIS_URL
```
"""

from bookhive.core.config.settings import Settings, get_settings, reload_settings

__all__ = ["Settings", "get_settings", "reload_settings"]
