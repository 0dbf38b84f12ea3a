"""ACME protocol messages."""
import datetime
from collections.abc import Hashable
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Mapping
from typing import MutableMapping
from typing import Optional
from typing import Tuple

import josepy as jose

from dnsacme import errors
from dnsacme import fields

ERROR_PREFIX = "urn:acme:error:"

ERROR_CODES = {
    'badCSR': 'The CSR is unacceptable (e.g., due to a short key)',
    'badNonce': 'The client sent an unacceptable anti-replay nonce',
    'connection': ('The server could not connect to the client to verify the'
                   ' domain'),
    'dnssec': 'The server could not validate a DNSSEC signed domain',
    # deprecate invalidEmail
    'invalidEmail': 'The provided email for a registration was invalid',
    'invalidContact': 'The provided contact URI was invalid',
    'malformed': 'The request message was malformed',
    'rateLimited': 'There were too many requests of a given type',
    'serverInternal': 'The server experienced an internal error',
    'tls': 'The server experienced a TLS error during domain verification',
    'unauthorized': 'The client lacks sufficient authorization',
    'unknownHost': 'The server could not resolve a domain name',
}

ERROR_TYPE_DESCRIPTIONS = dict(
    (ERROR_PREFIX + name, desc) for name, desc in ERROR_CODES.items())


class Error(jose.JSONObjectWithFields, errors.Error):
    """ACME error, a problem document.

    https://tools.ietf.org/html/draft-ietf-appsawg-http-problem-00

    :ivar str typ:
    :ivar str title:
    :ivar str detail:

    """
    typ: str = jose.field('type', omitempty=True, default='about:blank')
    title: str = jose.field('title', omitempty=True)
    detail: str = jose.field('detail', omitempty=True)

    @property
    def description(self) -> Optional[str]:
        """Hardcoded error description based on its type.

        :returns: Description if standard ACME error or ``None``.
        :rtype: str

        """
        return ERROR_TYPE_DESCRIPTIONS.get(self.typ)

    @property
    def code(self) -> Optional[str]:
        """ACME error code.

        Basically self.typ without the error prefix.

        :returns: error code if standard ACME code or ``None``.
        :rtype: str

        """
        code = str(self.typ).rsplit(':', maxsplit=1)[-1]
        if code in ERROR_CODES:
            return code
        return None

    def __str__(self) -> str:
        return b' :: '.join(
            part.encode('ascii', 'backslashreplace') for part in
            (self.typ, self.description, self.detail, self.title)
            if part is not None).decode()


class _Constant(jose.JSONDeSerializable, Hashable):
    """ACME constant."""
    __slots__ = ('name',)
    POSSIBLE_NAMES: Dict[str, '_Constant'] = NotImplemented

    def __init__(self, name: str) -> None:
        super().__init__()
        self.POSSIBLE_NAMES[name] = self  # pylint: disable=unsupported-assignment-operation
        self.name = name

    def to_partial_json(self) -> str:
        return self.name

    @classmethod
    def from_json(cls, jobj: str) -> '_Constant':
        if jobj not in cls.POSSIBLE_NAMES:  # pylint: disable=unsupported-membership-test
            raise jose.DeserializationError(
                '{0} not recognized'.format(cls.__name__))
        return cls.POSSIBLE_NAMES[jobj]

    def __repr__(self) -> str:
        return '{0}({1})'.format(self.__class__.__name__, self.name)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, type(self)) and other.name == self.name

    def __hash__(self) -> int:
        return hash((self.__class__, self.name))


class Status(_Constant):
    """ACME "status" field."""
    POSSIBLE_NAMES: Dict[str, _Constant] = {}


STATUS_UNKNOWN = Status('unknown')
STATUS_PENDING = Status('pending')
STATUS_PROCESSING = Status('processing')
STATUS_VALID = Status('valid')
STATUS_INVALID = Status('invalid')
STATUS_REVOKED = Status('revoked')
STATUS_DEACTIVATED = Status('deactivated')


class IdentifierType(_Constant):
    """ACME identifier type."""
    POSSIBLE_NAMES: Dict[str, _Constant] = {}


IDENTIFIER_FQDN = IdentifierType('dns')  # IdentifierDNS in Boulder


class Identifier(jose.JSONObjectWithFields):
    """ACME identifier.

    :ivar IdentifierType typ:
    :ivar str value:

    """
    typ: IdentifierType = jose.field('type', decoder=IdentifierType.from_json)
    value: str = jose.field('value')


class Directory(jose.JSONDeSerializable):
    """Directory.

    Maps resource names (``new-reg``, ``new-authz``, ...) to endpoint
    URIs. The optional ``meta`` member is kept as `Directory.Meta`.

    """

    class Meta(jose.JSONObjectWithFields):
        """Directory Meta."""
        terms_of_service: str = jose.field('terms-of-service', omitempty=True)
        website: str = jose.field('website', omitempty=True)
        caa_identities: List[str] = jose.field('caa-identities', omitempty=True)

    def __init__(self, jobj: Mapping[str, Any]) -> None:
        self._jobj = dict(jobj)

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name.replace('_', '-')]
        except KeyError as error:
            raise AttributeError(str(error))

    def __getitem__(self, name: str) -> Any:
        try:
            return self._jobj[name]
        except KeyError:
            raise KeyError('Directory field "' + name + '" not found')

    def __contains__(self, name: object) -> bool:
        return name in self._jobj

    def __iter__(self) -> Iterator[str]:
        return iter(name for name in self._jobj if name != 'meta')

    def to_partial_json(self) -> Dict[str, Any]:
        return self._jobj

    @classmethod
    def from_json(cls, jobj: MutableMapping[str, Any]) -> 'Directory':
        jobj = dict(jobj)
        jobj['meta'] = cls.Meta.from_json(jobj.pop('meta', {}))
        return cls(jobj)


class ResourceBody(jose.JSONObjectWithFields):
    """ACME Resource Body."""


class Registration(ResourceBody):
    """Registration Resource Body.

    :ivar jose.JWK key: Public key.
    :ivar tuple contact: Contact information following the ACME draft,
        `tuple` of `str`.
    :ivar str agreement: URI of the accepted Terms of Service.

    """
    # on new-reg key server ignores 'key' and populates it based on
    # JWS.signature.combined.jwk
    key: jose.JWK = jose.field('key', omitempty=True, decoder=jose.JWK.from_json)
    contact: Tuple[str, ...] = jose.field('contact', omitempty=True, default=())
    agreement: str = jose.field('agreement', omitempty=True)

    email_prefix = 'mailto:'

    @contact.decoder  # type: ignore
    def contact(value: List[str]) -> Tuple[str, ...]:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(value)

    @classmethod
    def from_data(cls, email: Optional[str] = None, **kwargs: Any) -> 'Registration':
        """Create registration resource from contact details."""
        details = list(kwargs.pop('contact', ()))
        if email is not None:
            details.extend([cls.email_prefix + mail for mail in email.split(',')])
        if details:
            kwargs['contact'] = tuple(details)
        return cls(**kwargs)

    @property
    def emails(self) -> Tuple[str, ...]:
        """All emails found in the ``contact`` field."""
        return tuple(
            detail[len(self.email_prefix):] for detail in self.contact  # pylint: disable=not-an-iterable
            if detail.startswith(self.email_prefix))


class NewRegistration(Registration):
    """New registration."""
    resource_type = 'new-reg'
    resource: str = fields.resource(resource_type)


class UpdateRegistration(Registration):
    """Update registration, also used to fetch an existing one."""
    resource_type = 'reg'
    resource: str = fields.resource(resource_type)


class ChallengeBody(ResourceBody):
    """Challenge Resource Body.

    Challenge types are only known to the caller, so the type is kept as
    a plain string and every challenge is represented by this class.

    :ivar str typ: Challenge type, e.g. ``dns-01``.
    :ivar str uri: Where to POST the challenge response.
    :ivar str token: Token the key authorization is built from.
    :ivar acme.messages.Status status:
    :ivar str key_authorization: Set once the challenge was answered.
    :ivar datetime.datetime validated:
    :ivar messages.Error error:

    """
    typ: str = jose.field('type')
    uri: str = jose.field('uri')
    token: str = jose.field('token', omitempty=True)
    status: Status = jose.field('status', decoder=Status.from_json,
                                omitempty=True, default=STATUS_PENDING)
    key_authorization: str = jose.field('keyAuthorization', omitempty=True)
    validated: datetime.datetime = fields.rfc3339('validated', omitempty=True)
    error: Error = jose.field('error', decoder=Error.from_json,
                              omitempty=True, default=None)


class ChallengeResponse(ResourceBody):
    """Response to a challenge, telling the server to start validation."""
    resource_type = 'challenge'
    resource: str = fields.resource(resource_type)
    typ: str = jose.field('type')
    key_authorization: str = jose.field('keyAuthorization')


class Authorization(ResourceBody):
    """Authorization Resource Body.

    :ivar acme.messages.Identifier identifier:
    :ivar list challenges: `list` of `.ChallengeBody`
    :ivar tuple combinations: Challenge combinations (`tuple` of `tuple`
        of `int`, as opposed to `list` of `list` on the wire).
    :ivar acme.messages.Status status:
    :ivar datetime.datetime expires:

    """
    identifier: Identifier = jose.field('identifier', decoder=Identifier.from_json, omitempty=True)
    challenges: Tuple[ChallengeBody, ...] = jose.field('challenges', omitempty=True, default=())
    combinations: Tuple[Tuple[int, ...], ...] = jose.field('combinations', omitempty=True)

    status: Status = jose.field('status', omitempty=True, decoder=Status.from_json)
    expires: datetime.datetime = fields.rfc3339('expires', omitempty=True)

    # Mypy does not understand the josepy magic happening here, and falsely claims
    # that challenge is redefined. Let's ignore the type check here.
    @challenges.decoder  # type: ignore
    def challenges(value: List[Dict[str, Any]]) -> Tuple[ChallengeBody, ...]:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        return tuple(ChallengeBody.from_json(chall) for chall in value)


class NewAuthorization(Authorization):
    """New authorization."""
    resource_type = 'new-authz'
    resource: str = fields.resource(resource_type)


class CertificateRequest(jose.JSONObjectWithFields):
    """ACME new-cert request.

    :ivar bytes csr: DER encoded certificate signing request.
    :ivar datetime.datetime not_before:
    :ivar datetime.datetime not_after:

    """
    resource_type = 'new-cert'
    resource: str = fields.resource(resource_type)
    csr: bytes = jose.field('csr', decoder=jose.decode_b64jose, encoder=jose.encode_b64jose)
    not_before: datetime.datetime = fields.rfc3339('notBefore', omitempty=True)
    not_after: datetime.datetime = fields.rfc3339('notAfter', omitempty=True)


class Resource(jose.JSONObjectWithFields):
    """ACME Resource, as returned by every `.Client` step.

    :ivar body: Resource body.
    :ivar int status_code: HTTP status of the response it was built from.
    :ivar dict links: Relation name to URI mapping of that response.

    """
    body: Any = jose.field('body')
    status_code: int = jose.field('status_code', omitempty=True)
    links: Dict[str, str] = jose.field('links', omitempty=True)


class ResourceWithURI(Resource):
    """ACME Resource with URI.

    :ivar str uri: Location of the resource.

    """
    uri: str = jose.field('uri')


class RegistrationResource(ResourceWithURI):
    """Registration Resource.

    :ivar acme.messages.Registration body:
    :ivar str terms_of_service: URL for the CA TOS.

    """
    body: Registration = jose.field('body', decoder=Registration.from_json)
    terms_of_service: str = jose.field('terms_of_service', omitempty=True)


class ChallengeResource(Resource):
    """Challenge Resource.

    :ivar acme.messages.ChallengeBody body:
    :ivar str authzr_uri: URI found in the 'up' ``Link`` header.

    """
    body: ChallengeBody = jose.field('body', decoder=ChallengeBody.from_json)
    authzr_uri: str = jose.field('authzr_uri', omitempty=True)

    @property
    def uri(self) -> str:
        """The URL of the challenge body."""
        return self.body.uri  # pylint: disable=no-member


class AuthorizationResource(ResourceWithURI):
    """Authorization Resource.

    :ivar acme.messages.Authorization body:

    """
    body: Authorization = jose.field('body', decoder=Authorization.from_json)


class CertificateResource(ResourceWithURI):
    """Certificate Resource.

    :ivar bytes body: Certificate as returned by the server (DER), or
        ``None`` if it has to be fetched from ``uri``.
    :ivar str cert_chain_uri: URI found in the 'up' ``Link`` header

    """
    body: Optional[bytes] = jose.field('body', omitempty=True)
    cert_chain_uri: str = jose.field('cert_chain_uri', omitempty=True)
