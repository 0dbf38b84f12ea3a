"""Anti-replay nonce pool."""
import collections
import logging
from typing import Deque
from typing import Optional

import josepy as jose

from dnsacme import errors
from dnsacme import jws
from dnsacme import transport

logger = logging.getLogger(__name__)


def _check_nonce(nonce: str) -> str:
    try:
        jws.Header._fields['nonce'].decode(nonce)  # pylint: disable=protected-access
    except jose.DeserializationError as error:
        raise errors.BadNonce(nonce, error)
    return nonce


class NoncePool:
    """Unused nonces handed out to signed requests, oldest first.

    Every nonce is handed out at most once. The pool is refilled from the
    ``Replay-Nonce`` header of every response; when it runs dry `take`
    fetches a fresh nonce with a HEAD request against ``url``.

    Not safe to share between concurrently running requests; give every
    `.Client` its own pool.

    :ivar str url: URI to HEAD when a fresh nonce is needed.

    """

    def __init__(self, net: transport.ClientNetwork, url: str) -> None:
        self.net = net
        self.url = url
        self._nonces: Deque[str] = collections.deque()

    def __len__(self) -> int:
        return len(self._nonces)

    def offer(self, nonce: Optional[str]) -> None:
        """Store a nonce observed in a response.

        :raises .BadNonce: if the nonce is not valid base64url.

        """
        if not nonce:
            return
        logger.debug('Storing nonce: %s', nonce)
        self._nonces.append(_check_nonce(nonce))

    async def take(self) -> str:
        """Remove and return the oldest nonce, fetching one if none is left.

        :raises .MissingNonce: if the HEAD response carries no nonce.

        """
        if self._nonces:
            return self._nonces.popleft()
        logger.debug('Requesting fresh nonce')
        response = await self.net.head(self.url)
        if response.nonce is None:
            raise errors.MissingNonce(response.headers)
        return _check_nonce(response.nonce)
