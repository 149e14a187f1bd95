from mapin.realtime.connection_manager import ConnectionManager
from mapin.realtime.dispatcher import ChangeDispatcher
from mapin.realtime.feed import ChangeFeed
from mapin.realtime.live_query import LiveQuery
from mapin.realtime.publisher import ChangePublisher

__all__ = [
    "ChangeDispatcher",
    "ChangeFeed",
    "ChangePublisher",
    "ConnectionManager",
    "LiveQuery",
]
