"""EasyPasta - discover a LAN peer over mDNS and chat with it over a websocket."""

__version__ = "0.1.0"
