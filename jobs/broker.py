"""
Dramatiq broker configuration.

Redis-based message broker for the reconciliation jobs. Importing this
module sets the global broker, so every task module imports it first.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage, ShutdownNotifications
from loguru import logger

from custody.config.constants import DRAMATIQ_NAMESPACE
from custody.utils.redis_utils import get_redis_url

redis_broker = RedisBroker(url=get_redis_url(), namespace=DRAMATIQ_NAMESPACE)

# Reconciliation actors set max_retries=0: a missed run is simply
# repeated by the next scheduled one, so the default Retries middleware
# is left as is.
redis_broker.add_middleware(ShutdownNotifications())
redis_broker.add_middleware(CurrentMessage())

dramatiq.set_broker(redis_broker)

broker = redis_broker

logger.info(f"Dramatiq broker initialized: {get_redis_url(masked=True)}")
