"""HTTPS transport for ACME requests."""
import asyncio
import base64
import datetime
from email.utils import parsedate_tz
import json
import logging
import re
from typing import Any
from typing import Dict
from typing import NamedTuple
from typing import Optional
from typing import Union

import requests
from requests.adapters import HTTPAdapter
from requests.utils import parse_header_links

from dnsacme import errors

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 45


class JSONBody(NamedTuple):
    """Body of a JSON (or problem+json) response."""
    value: Any


class BinaryBody(NamedTuple):
    """Body of a binary response, e.g. a DER certificate."""
    data: bytes


class TextBody(NamedTuple):
    """Body of any other response, decoded as UTF-8."""
    text: str


Body = Union[JSONBody, BinaryBody, TextBody]


class Response(NamedTuple):
    """Outcome of a single request/response exchange.

    :ivar int status_code: HTTP status.
    :ivar str nonce: ``Replay-Nonce`` header, if any.
    :ivar dict links: Relation name to URI, including ``self``.
    :ivar int retry_after: ``Retry-After`` in seconds, if any.
    :ivar str content_type: Media type, without parameters.
    :ivar body: Decoded body.
    :ivar dict headers: All response headers.

    """
    status_code: int
    nonce: Optional[str]
    links: Dict[str, str]
    retry_after: Optional[int]
    content_type: Optional[str]
    body: Body
    headers: Dict[str, str]

    @property
    def ok(self) -> bool:
        """Is the status code a 2xx?"""
        return 200 <= self.status_code < 300


def parse_links(headers: Any, request_uri: str) -> Dict[str, str]:
    """Relation name to URI mapping from the ``Link`` header.

    The synthetic ``self`` relation is the ``Location`` header, or the
    request URI when the response does not carry one.

    """
    links: Dict[str, str] = {}
    if 'Link' in headers:
        for link in parse_header_links(headers['Link']):
            if 'rel' in link and 'url' in link:
                links[link['rel']] = link['url']
    links['self'] = headers.get('Location', request_uri)
    return links


def parse_retry_after(value: Optional[str],
                      now: Optional[datetime.datetime] = None) -> Optional[int]:
    """Seconds to wait according to a ``Retry-After`` header value.

    Handles integers and the date formats of
    https://www.w3.org/Protocols/rfc2616/rfc2616-sec14.html#sec14.37

    :returns: seconds, or ``None`` if absent or unparsable.

    """
    if value is None:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        # The RFC 2822 parser handles all of RFC 2616's cases in modern
        # environments (primarily HTTP 1.1+ but also py27+)
        when = parsedate_tz(value)
        if when is None:
            return None
        try:
            tz_secs = datetime.timedelta(seconds=when[-1] if when[-1] is not None else 0)
            moment = datetime.datetime(*when[:6]) - tz_secs
        except (ValueError, OverflowError):
            return None
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
        return max(0, int((moment - now).total_seconds()))


class ClientNetwork:
    """Wrapper around requests performing one exchange per call.

    Also adds user agent, and decodes bodies according to Content-Type.
    Requests run in a worker thread so callers can await them and cancel
    the wait.

    :param bool verify_ssl: Whether to verify certificates on SSL connections.
    :param str user_agent: String to send as User-Agent header.
    :param int timeout: Timeout for requests.

    """
    JSON_CONTENT_TYPE = 'application/json'
    JOSE_CONTENT_TYPE = 'application/jose'
    JSON_ERROR_CONTENT_TYPE = 'application/problem+json'
    PKIX_CERT_CONTENT_TYPE = 'application/pkix-cert'
    BINARY_CONTENT_TYPES = frozenset([PKIX_CERT_CONTENT_TYPE])
    REPLAY_NONCE_HEADER = 'Replay-Nonce'

    def __init__(self, verify_ssl: bool = True, user_agent: str = 'dnsacme',
                 timeout: int = DEFAULT_NETWORK_TIMEOUT) -> None:
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.session = requests.Session()
        self._default_timeout = timeout
        adapter = HTTPAdapter()

        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()

    def __enter__(self) -> 'ClientNetwork':
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @classmethod
    def _decode_body(cls, method: str, response: requests.Response,
                     content_type: Optional[str]) -> Body:
        if method == 'HEAD':
            return TextBody('')
        if content_type is not None and (
                content_type in (cls.JSON_CONTENT_TYPE, cls.JSON_ERROR_CONTENT_TYPE)
                or content_type.endswith('+json')):
            try:
                return JSONBody(json.loads(response.content.decode('utf-8')))
            except ValueError:
                logger.debug('Ignoring wrong Content-Type (%r) for non-JSON response',
                             content_type)
                return TextBody(response.content.decode('utf-8', 'replace'))
        if content_type in cls.BINARY_CONTENT_TYPES:
            return BinaryBody(response.content)
        return TextBody(response.content.decode('utf-8', 'replace'))

    def _send_request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send HTTP request.

        Makes sure that `verify_ssl` is respected. Logs request and
        response (with headers). For allowed parameters please see
        `requests.request`.

        :raises .NetworkError: in case of any problems

        """
        if method == "POST":
            logger.debug('Sending POST request to %s:\n%s',
                         url, kwargs['data'])
        else:
            logger.debug('Sending %s request to %s.', method, url)
        kwargs['verify'] = self.verify_ssl
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', self.user_agent)
        kwargs.setdefault('timeout', self._default_timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            # pylint: disable=pointless-string-statement
            """Requests response parsing

            The requests library emits exceptions with a lot of extra text.
            We parse them with a regexp to raise a more readable exceptions.

            Example:
            HTTPSConnectionPool(host='acme-v01.api.letsencrypt.org',
            port=443): Max retries exceeded with url: /directory
            (Caused by NewConnectionError('
            <requests.packages.urllib3.connection.VerifiedHTTPSConnection
            object at 0x108356c50>: Failed to establish a new connection:
            [Errno 65] No route to host',))"""

            # pylint: disable=line-too-long
            err_regex = r".*host='(\S*)'.*Max retries exceeded with url\: (\/\w*).*(\[Errno \d+\])([A-Za-z ]*)"
            m = re.match(err_regex, str(e))
            if m is None:
                raise errors.NetworkError('Requesting {0}: {1}'.format(url, e))
            host, path, _err_no, err_msg = m.groups()
            raise errors.NetworkError(f"Requesting {host}{path}:{err_msg}")

        # If an Accept header was sent in the request, the response may not be
        # UTF-8 encoded. In this case, we log the base64 response instead of
        # raw bytes to keep binary data out of the logs.
        debug_content: Union[bytes, str]
        if "Accept" in kwargs["headers"]:
            debug_content = base64.b64encode(response.content)
        else:
            response.encoding = "utf-8"
            debug_content = response.text
        logger.debug('Received response:\nHTTP %d\n%s\n\n%s',
                     response.status_code,
                     "\n".join("{0}: {1}".format(k, v)
                               for k, v in response.headers.items()),
                     debug_content)
        return response

    def _exchange(self, method: str, url: str, **kwargs: Any) -> Response:
        response = self._send_request(method, url, **kwargs)
        content_type = response.headers.get('Content-Type')
        # Strip parameters from the media-type (rfc2616#section-3.7)
        if content_type:
            content_type = content_type.split(';')[0].strip().lower()
        return Response(
            status_code=response.status_code,
            nonce=response.headers.get(self.REPLAY_NONCE_HEADER) or None,
            links=parse_links(response.headers, url),
            retry_after=parse_retry_after(response.headers.get('Retry-After')),
            content_type=content_type or None,
            body=self._decode_body(method, response, content_type),
            headers=dict(response.headers))

    async def request(self, method: str, url: str, data: Optional[str] = None,
                      content_type: Optional[str] = None,
                      accept: Optional[str] = None) -> Response:
        """Perform exactly one request.

        :param str method: HTTP method.
        :param str url: Target URI.
        :param str data: Request body.
        :param str content_type: Content-Type of ``data``.
        :param str accept: Accept header, if a specific media type is wanted.

        :raises .NetworkError: if the exchange failed at the transport level.
        :raises .TaskCancelled: if the awaiting task was cancelled.

        """
        headers = {}
        if content_type is not None:
            headers['Content-Type'] = content_type
        if accept is not None:
            headers['Accept'] = accept
        kwargs: Dict[str, Any] = {'headers': headers}
        if data is not None:
            kwargs['data'] = data
        try:
            return await asyncio.to_thread(self._exchange, method, url, **kwargs)
        except asyncio.CancelledError as error:
            if isinstance(error, errors.TaskCancelled):
                raise
            raise errors.TaskCancelled(
                '{0} request to {1} was cancelled'.format(method, url)) from error

    async def head(self, url: str) -> Response:
        """Send HEAD request."""
        return await self.request('HEAD', url)

    async def get(self, url: str, accept: Optional[str] = None) -> Response:
        """Send GET request."""
        return await self.request('GET', url, accept=accept)

    async def post(self, url: str, data: str, content_type: str = JOSE_CONTENT_TYPE,
                   accept: Optional[str] = None) -> Response:
        """POST an already signed body."""
        return await self.request('POST', url, data=data, content_type=content_type,
                                  accept=accept)
