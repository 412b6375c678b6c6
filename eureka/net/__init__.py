"""Secure multicast transport: key derivation, AEAD codec, interface
resolution, group membership, and the transport that ties them together.
"""
