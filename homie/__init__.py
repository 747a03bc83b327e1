"""
Homie - shared household inventories.

Users register, receive a session cookie and a default inventory, share
inventories with other users, and keep every copy in sync over a single
authenticated WebSocket.
"""

__version__ = "0.1.0"
