"""Secure LAN discovery over UDP multicast.

Devices on the same network segment share a password and salt, and exchange
authenticated, encrypted datagrams bound to the sender's network address.
"""

__version__ = "0.1.0"
