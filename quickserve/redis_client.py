from shared.redis import get_redis

from .config import REDIS_URL

# None when REDIS_URL is unset; callers skip redis-backed features
redis_client = get_redis(REDIS_URL)
