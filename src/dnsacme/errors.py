"""ACME client errors."""
import asyncio
import typing
from typing import Any
from typing import Iterable
from typing import Mapping
from typing import Optional

# We import dnsacme.messages only during type check to avoid circular dependencies. Type
# references to dnsacme.messages.* must be quoted to be lazily initialized.
if typing.TYPE_CHECKING:
    from dnsacme import messages  # pragma: no cover


class Error(Exception):
    """Generic ACME client error."""


class NetworkError(Error):
    """Transport level failure, e.g. connection refused or timed out."""


class SigningError(Error):
    """Account key could not be loaded or used for signing."""


class DirectoryError(Error):
    """The directory resource could not be fetched.

    :ivar int status_code: HTTP status of the directory response.
    :ivar body: Decoded response body.

    """
    def __init__(self, status_code: int, body: Any) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__()

    def __str__(self) -> str:
        return 'Failed to get directory (HTTP {0}): {1!r}'.format(
            self.status_code, self.body)


class UnknownResourceError(Error):
    """The directory does not advertise the requested resource."""
    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__()

    def __str__(self) -> str:
        return 'Could not determine endpoint for resource {0}'.format(self.resource)


class UnsupportedChallengeError(Error):
    """None of the challenges offered by the server can be satisfied.

    :ivar tuple offered: Types of the challenges the server offered.
    :ivar tuple supported: Types this client is able to satisfy.

    """
    def __init__(self, offered: Iterable[str], supported: Iterable[str]) -> None:
        self.offered = tuple(offered)
        self.supported = tuple(supported)
        super().__init__()

    def __str__(self) -> str:
        received = ', '.join("'{0}'".format(typ) for typ in self.offered) or 'nothing'
        return 'Server did not issue a supported challenge. Received {0} but only {1} {2}.'.format(
            received, ', '.join("'{0}'".format(typ) for typ in self.supported),
            'is supported' if len(self.supported) == 1 else 'are supported')


class ProtocolError(Error):
    """The server answered with an unexpected HTTP status.

    :ivar int status_code: HTTP status of the response.
    :ivar body: Decoded response body (`dict`, `bytes` or `str`).
    :ivar problem: Parsed problem document, if the body was one.
    :vartype problem: `dnsacme.messages.Error` or ``None``

    """
    def __init__(self, status_code: int, body: Any,
                 problem: Optional['messages.Error'] = None) -> None:
        self.status_code = status_code
        self.body = body
        self.problem = problem
        super().__init__()

    def __str__(self) -> str:
        if self.problem is not None:
            return 'Server returned HTTP {0}: {1}'.format(self.status_code, self.problem)
        return 'Server returned HTTP {0}: {1!r}'.format(self.status_code, self.body)


class NonceError(Error):
    """Server response nonce error."""


class BadNonce(NonceError):
    """Bad nonce error."""
    def __init__(self, nonce: str, error: Exception, *args: Any) -> None:
        super().__init__(*args)
        self.nonce = nonce
        self.error = error

    def __str__(self) -> str:
        return 'Invalid nonce ({0!r}): {1}'.format(self.nonce, self.error)


class MissingNonce(NonceError):
    """Missing nonce error.

    The server did not include a ``Replay-Nonce`` header in a response
    that was requested for the sole purpose of obtaining one.

    :ivar headers: Mapping of HTTP headers

    """
    def __init__(self, headers: Mapping, *args: Any) -> None:
        super().__init__(*args)
        self.headers = dict(headers)

    def __str__(self) -> str:
        return ('Server response did not include a replay '
                'nonce, headers: {0} (This may be a service outage)'.format(
                    self.headers))


class DNSResolutionError(Error):
    """DNS lookup failed for a reason other than the name not existing yet."""


class Cancelled(Error):
    """A poll or a request did not complete before its deadline, or was cancelled."""


class TaskCancelled(Cancelled, asyncio.CancelledError):
    """The task awaiting a poll or a request was cancelled.

    Also an `asyncio.CancelledError`, raised from the original one, so the
    task still ends up in the cancelled state. Deadline expiry raises a
    plain `Cancelled`, which task groups propagate like any other error.

    """
