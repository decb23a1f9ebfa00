from .connected_account import AccountMetric, ConnectedAccount
from .connection_event import ConnectionEvent

__all__ = [
    "AccountMetric",
    "ConnectedAccount",
    "ConnectionEvent",
]
