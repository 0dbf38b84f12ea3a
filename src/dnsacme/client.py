"""ACME client API."""
import asyncio
import datetime
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional
from typing import Type
from typing import TypeVar

import josepy as jose
import pytz

from dnsacme import account as account_lib
from dnsacme import challenges
from dnsacme import directory as directory_lib
from dnsacme import errors
from dnsacme import messages
from dnsacme import nonce
from dnsacme import transport

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 5.0
DEFAULT_CERTIFICATE_LIFETIME = datetime.timedelta(days=90)

GenericBody = TypeVar('GenericBody', bound=jose.JSONDeSerializable)


async def _sleep(delay: float) -> None:
    try:
        await asyncio.sleep(delay)
    except asyncio.CancelledError as error:
        if isinstance(error, errors.TaskCancelled):
            raise
        raise errors.TaskCancelled('Polling was cancelled') from error


class Client:
    """ACME client for the ``new-reg``/``new-authz``/``new-cert`` API.

    Every step returns a resource describing the server's answer and
    leaves it to the caller to decide whether to go on. A client talks to
    a single server and owns its directory cache and nonce pool; run one
    workflow per instance.

    :ivar str directory_url: Directory (server root) URI.
    :ivar .Account account: Account key requests are signed with.
    :ivar .ClientNetwork net: Client network.

    """

    def __init__(self, directory_url: str, account: account_lib.Account,
                 net: Optional[transport.ClientNetwork] = None) -> None:
        self.directory_url = directory_url
        self.account = account
        self.net = transport.ClientNetwork() if net is None else net
        self.nonces = nonce.NoncePool(self.net, directory_url)
        self.directory = directory_lib.DirectoryResolver(self.net, directory_url, self.nonces)

    def close(self) -> None:
        """Close the network session."""
        self.net.close()

    async def __aenter__(self) -> 'Client':
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    async def _post(self, url: str, obj: jose.JSONDeSerializable,
                    accept: Optional[str] = None) -> transport.Response:
        """Sign ``obj`` with a fresh nonce and POST it to ``url``."""
        data = self.account.sign(obj, await self.nonces.take())
        response = await self.net.post(url, data, accept=accept)
        self.nonces.offer(response.nonce)
        return response

    @classmethod
    def _check_response(cls, response: transport.Response, *success_codes: int
                        ) -> transport.Response:
        """Check the status code of ``response``.

        :raises .ProtocolError: if the status is not one of
            ``success_codes``, with the problem document attached when the
            server sent one.

        """
        if response.status_code in success_codes:
            return response
        problem = None
        body = response.body
        if isinstance(body, transport.JSONBody) and isinstance(body.value, dict) \
                and 'type' in body.value:
            try:
                problem = messages.Error.from_json(body.value)
            except jose.DeserializationError as error:
                logger.debug('Unable to parse problem document: %s', error)
        raise errors.ProtocolError(response.status_code, body[0], problem)

    @classmethod
    def _decode(cls, response: transport.Response,
                body_cls: Type[GenericBody]) -> GenericBody:
        if not isinstance(response.body, transport.JSONBody):
            raise errors.ProtocolError(response.status_code, response.body[0])
        try:
            return body_cls.from_json(response.body.value)
        except (jose.DeserializationError, TypeError, AttributeError) as error:
            logger.debug('Unable to parse %s: %s', body_cls.__name__, error)
            raise errors.ProtocolError(response.status_code, response.body.value)

    @classmethod
    def _regr_from_response(cls, response: transport.Response,
                            terms_of_service: Optional[str] = None
                            ) -> messages.RegistrationResource:
        return messages.RegistrationResource(
            body=cls._decode(response, messages.Registration),
            uri=response.links['self'],
            status_code=response.status_code,
            links=response.links,
            terms_of_service=response.links.get('terms-of-service', terms_of_service))

    @classmethod
    def _authzr_from_response(cls, response: transport.Response
                              ) -> messages.AuthorizationResource:
        return messages.AuthorizationResource(
            body=cls._decode(response, messages.Authorization),
            uri=response.links['self'],
            status_code=response.status_code,
            links=response.links)

    async def register(self, email: Optional[str] = None) -> messages.RegistrationResource:
        """Register the account key.

        Registering a key the server already knows is not an error: the
        existing registration is fetched and returned instead.

        :param str email: Contact email(s), comma separated.

        :returns: Registration Resource.
        :rtype: `.RegistrationResource`

        """
        new_reg = messages.NewRegistration.from_data(email=email)
        response = await self._post(await self.directory.resolve('new-reg'), new_reg)
        if response.status_code == 409:
            uri = response.links['self']
            logger.info('Account key is already registered at %s', uri)
            return await self.registration(uri)
        self._check_response(response, 200, 201, 202)
        return self._regr_from_response(response)

    async def registration(self, uri: str) -> messages.RegistrationResource:
        """Fetch an existing registration.

        :param str uri: Registration URI.

        """
        response = await self._post(uri, messages.UpdateRegistration())
        self._check_response(response, 200, 202)
        return self._regr_from_response(response)

    async def accept_terms(self, regr: messages.RegistrationResource,
                           terms_uri: Optional[str] = None) -> messages.RegistrationResource:
        """Agree to the Terms of Service.

        Nothing is sent if the registration already agreed to the terms.

        :param .RegistrationResource regr: Registration to update.
        :param str terms_uri: Terms to agree to. Defaults to the
            registration's ``terms-of-service`` link, then to the
            directory's ``meta``.

        :returns: Updated Registration Resource.
        :rtype: `.RegistrationResource`

        """
        if terms_uri is None:
            terms_uri = regr.terms_of_service
        if terms_uri is None:
            terms_uri = (await self.directory.get())['meta'].terms_of_service
        if terms_uri is None:
            raise errors.Error('Server did not advertise any Terms of Service')
        if regr.body.agreement == terms_uri:
            logger.debug('Terms of Service %s already accepted', terms_uri)
            return regr

        response = await self._post(regr.uri, messages.UpdateRegistration(agreement=terms_uri))
        self._check_response(response, 200, 202)
        return self._regr_from_response(response, terms_of_service=regr.terms_of_service)

    async def authorize_domain(self, domain: str) -> messages.AuthorizationResource:
        """Request a new authorization for ``domain``.

        :returns: Authorization Resource.
        :rtype: `.AuthorizationResource`

        """
        new_authz = messages.NewAuthorization(identifier=messages.Identifier(
            typ=messages.IDENTIFIER_FQDN, value=domain))
        response = await self._post(await self.directory.resolve('new-authz'), new_authz)
        self._check_response(response, 200, 201)
        return self._authzr_from_response(response)

    async def submit_challenge_response(self, challenge_uri: str, typ: str,
                                        key_authorization: str,
                                        ready: Optional[Awaitable[Any]] = None
                                        ) -> messages.ChallengeResource:
        """Tell the server the challenge can be validated.

        :param str challenge_uri: Challenge URI.
        :param str typ: Challenge type.
        :param str key_authorization: Key authorization for the challenge.
        :param ready: Awaited before anything is sent, e.g. until the
            validation record is published.

        :returns: Challenge Resource with updated body.
        :rtype: `.ChallengeResource`

        """
        if ready is not None:
            await ready
        response = await self._post(challenge_uri, messages.ChallengeResponse(
            typ=typ, key_authorization=key_authorization))
        self._check_response(response, 202)
        return messages.ChallengeResource(
            body=self._decode(response, messages.ChallengeBody),
            status_code=response.status_code,
            links=response.links,
            authzr_uri=response.links.get('up'))

    async def poll_authorization(self, authzr_uri: str,
                                 default_retry_after: float = DEFAULT_RETRY_AFTER,
                                 deadline: Optional[datetime.datetime] = None
                                 ) -> messages.AuthorizationResource:
        """Poll an authorization until it is no longer pending.

        The wait between polls is the server's ``Retry-After`` hint, or
        ``default_retry_after`` seconds when the hint is missing or zero.

        :param datetime.datetime deadline: Give up after this moment. No
            limit if ``None``.

        :returns: Authorization Resource in its final state.
        :rtype: `.AuthorizationResource`

        :raises .Cancelled: if the deadline passed.
        :raises .TaskCancelled: if the task was cancelled.

        """
        while True:
            response = await self.net.get(authzr_uri)
            self.nonces.offer(response.nonce)
            if not response.ok:
                self._check_response(response)
            authzr = self._authzr_from_response(response)
            if response.status_code != 202 or authzr.body.status != messages.STATUS_PENDING:
                return authzr

            delay = response.retry_after or default_retry_after
            expired = False
            if deadline is not None:
                remaining = (deadline - datetime.datetime.now()).total_seconds()
                expired = delay >= remaining
                delay = max(0.0, min(delay, remaining))
            logger.debug('Authorization %s still pending, retrying in %s seconds',
                         authzr_uri, delay)
            await _sleep(delay)
            if expired:
                raise errors.Cancelled(
                    'Authorization {0} still pending at deadline'.format(authzr_uri))

    async def perform_dns01(self, authzr: messages.AuthorizationResource,
                            ready: Optional[Callable[[str, str], Awaitable[Any]]],
                            default_retry_after: float = DEFAULT_RETRY_AFTER,
                            deadline: Optional[datetime.datetime] = None
                            ) -> messages.AuthorizationResource:
        """Satisfy a pending authorization with its dns-01 challenge.

        :param ready: Called with the TXT record name and value; the
            challenge is answered once the returned awaitable completes.

        :returns: Authorization Resource in its final state, or ``authzr``
            itself if it was not pending.

        :raises .UnsupportedChallengeError: if no dns-01 challenge is offered.

        """
        if authzr.body.status != messages.STATUS_PENDING:
            logger.debug('Authorization %s is %s, nothing to do',
                         authzr.uri, authzr.body.status)
            return authzr
        challb = challenges.select_challenge(authzr.body.challenges)
        key_authz = challenges.key_authorization(challb.token, self.account.thumbprint)
        record_name = challenges.validation_domain_name(authzr.body.identifier.value)
        record_value = challenges.validation(key_authz)
        logger.debug('TXT record %s should contain %s', record_name, record_value)

        await self.submit_challenge_response(
            challb.uri, challb.typ, key_authz,
            ready=ready(record_name, record_value) if ready is not None else None)
        return await self.poll_authorization(
            authzr.uri, default_retry_after=default_retry_after, deadline=deadline)

    async def request_certificate(self, csr_der: bytes,
                                  not_before: Optional[datetime.datetime] = None,
                                  not_after: Optional[datetime.datetime] = None
                                  ) -> messages.CertificateResource:
        """Request issuance.

        :param bytes csr_der: DER encoded certificate signing request.
        :param datetime.datetime not_before: Defaults to now.
        :param datetime.datetime not_after: Defaults to 90 days from now.

        :returns: Certificate Resource. ``body`` holds the certificate if
            the server returned it right away.
        :rtype: `.CertificateResource`

        """
        now = datetime.datetime.now(pytz.utc)
        if not_before is None:
            not_before = now
        if not_after is None:
            not_after = now + DEFAULT_CERTIFICATE_LIFETIME
        req = messages.CertificateRequest(csr=csr_der, not_before=not_before,
                                          not_after=not_after)
        response = await self._post(await self.directory.resolve('new-cert'), req,
                                    accept=transport.ClientNetwork.PKIX_CERT_CONTENT_TYPE)
        self._check_response(response, 200, 201)

        body: Optional[bytes] = None
        if isinstance(response.body, transport.BinaryBody):
            body = response.body.data
        elif isinstance(response.body, transport.TextBody) and response.body.text:
            body = response.body.text.encode('utf-8')
        return messages.CertificateResource(
            body=body,
            uri=response.links['self'],
            status_code=response.status_code,
            links=response.links,
            cert_chain_uri=response.links.get('up'))

    async def fetch_certificate(self, cert_uri: str) -> bytes:
        """Download a certificate.

        :returns: DER certificate, or PEM text as bytes.
        :rtype: bytes

        """
        response = await self.net.get(
            cert_uri, accept=transport.ClientNetwork.PKIX_CERT_CONTENT_TYPE)
        self.nonces.offer(response.nonce)
        self._check_response(response, 200)
        if isinstance(response.body, transport.BinaryBody):
            return response.body.data
        if isinstance(response.body, transport.TextBody):
            return response.body.text.encode('utf-8')
        raise errors.ProtocolError(response.status_code, response.body.value)
