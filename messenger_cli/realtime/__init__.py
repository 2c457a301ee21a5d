from messenger_cli.realtime.listener import IncomingListener

__all__ = [
    "IncomingListener",
]
