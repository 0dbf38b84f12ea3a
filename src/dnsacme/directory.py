"""Lazy discovery of the ACME directory resource."""
import logging
from typing import Optional

import josepy as jose

from dnsacme import errors
from dnsacme import messages
from dnsacme import nonce
from dnsacme import transport

logger = logging.getLogger(__name__)


class DirectoryResolver:
    """Fetches the directory once and answers endpoint lookups from it.

    The directory is never refetched: a resource the server does not
    advertise stays unknown for the lifetime of the resolver.

    :ivar str url: Directory (server root) URI.

    """

    def __init__(self, net: transport.ClientNetwork, url: str,
                 nonces: nonce.NoncePool) -> None:
        self.net = net
        self.url = url
        self.nonces = nonces
        self._directory: Optional[messages.Directory] = None

    async def get(self) -> messages.Directory:
        """Return the directory, fetching it on first use.

        :raises .DirectoryError: if the server does not answer 200 with a
            JSON object.

        """
        if self._directory is not None:
            return self._directory

        response = await self.net.get(self.url)
        self.nonces.offer(response.nonce)
        if response.status_code != 200:
            raise errors.DirectoryError(response.status_code, response.body[0])
        if not isinstance(response.body, transport.JSONBody) \
                or not isinstance(response.body.value, dict):
            raise errors.DirectoryError(response.status_code, response.body[0])
        try:
            directory = messages.Directory.from_json(response.body.value)
        except (jose.DeserializationError, TypeError, AttributeError) as error:
            logger.debug('Unable to parse directory: %s', error)
            raise errors.DirectoryError(response.status_code, response.body.value)

        logger.debug('Discovered resources: %s', ', '.join(sorted(directory)))
        self._directory = directory
        return directory

    async def resolve(self, resource: str) -> str:
        """Endpoint URI for ``resource``.

        :raises .UnknownResourceError: if the directory lacks ``resource``.

        """
        directory = await self.get()
        if resource not in directory or resource == 'meta':
            raise errors.UnknownResourceError(resource)
        return directory[resource]
