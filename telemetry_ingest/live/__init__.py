from .broadcaster import LiveBroadcaster
from .payloads import LIVE_EVENT, LiveUpdate
from .redis_sink import RedisLiveSink

__all__ = ["LIVE_EVENT", "LiveBroadcaster", "LiveUpdate", "RedisLiveSink"]
