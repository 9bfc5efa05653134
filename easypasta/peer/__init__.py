"""LAN peer link for the EasyPasta companion app.

Finds a desktop peer advertising ``_easypasta._tcp.local.`` on the same
network, opens a single websocket session to it and exchanges text messages
until either side disconnects.
"""
