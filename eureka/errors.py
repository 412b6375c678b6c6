"""Exception hierarchy shared by the transport and the broadcast layer.

Construction-time problems (``InvalidConfiguration`` and interface errors from
explicit configuration) are raised to the caller.  Everything that happens at
runtime is published on the event channel instead.
"""

from __future__ import annotations


class EurekaError(Exception):
    """Base class for all errors raised by eureka."""


class InvalidConfiguration(EurekaError, ValueError):
    """Missing or invalid options (empty password / salt, bad group, ...)."""


# ---------------------------------------------------------------------------
# Interface resolution
# ---------------------------------------------------------------------------

class InterfaceError(EurekaError):
    """Base class for interface lookup failures."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class UnknownInterface(InterfaceError):
    """The named interface is not present on the host."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"unknown network interface {name!r}")


class NoAddressForFamily(InterfaceError):
    """The interface exists but has no address of the requested family."""

    def __init__(self, name: str, family: str) -> None:
        super().__init__(name, f"interface {name!r} has no {family} address")
        self.family = family


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class CodecError(EurekaError):
    """Base class for encrypt / decrypt failures."""


class MalformedEnvelope(CodecError):
    """The datagram is too short to hold a tag and a nonce."""


class AuthenticationFailure(CodecError):
    """Tag verification failed: wrong key, wrong context, or tampering."""


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------

class SocketError(EurekaError):
    """An OS-level socket operation failed."""

    def __init__(self, operation: str, cause: OSError) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.errno = cause.errno
        self.__cause__ = cause
