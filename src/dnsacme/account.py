"""ACME account key and request signing."""
import json
import logging
from typing import Any
from typing import Mapping
from typing import Optional
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import josepy as jose

from dnsacme import errors
from dnsacme import jws

logger = logging.getLogger(__name__)

Payload = Union[jose.JSONDeSerializable, Mapping[str, Any]]


class Account:
    """Account key pair.

    Signs request payloads with the private key and exposes the public
    JWK and its thumbprint, which every key authorization is built from.

    :ivar josepy.JWKRSA key: Account private key.
    :ivar josepy.JWASignature alg: Signature algorithm, only ``RS256``.

    """
    SUPPORTED_ALGORITHMS = (jose.RS256,)

    def __init__(self, key: jose.JWK, alg: jose.JWASignature = jose.RS256) -> None:
        if alg not in self.SUPPORTED_ALGORITHMS:
            raise errors.SigningError('Unsupported signature algorithm: {0}'.format(alg.name))
        if not isinstance(key, alg.kty):
            raise errors.SigningError('{0} requires an RSA key, got {1}'.format(
                alg.name, type(key).__name__))
        self._key = key
        self._alg = alg
        self._jwk = key.public_key()
        self._thumbprint = jose.b64encode(self._jwk.thumbprint()).decode()

    @classmethod
    def load(cls, data: bytes, password: Optional[bytes] = None) -> 'Account':
        """Load an account from a PEM or DER encoded RSA private key.

        :raises .SigningError: if the key cannot be parsed or is not RSA.

        """
        loader = (serialization.load_pem_private_key if b'-----BEGIN' in data
                  else serialization.load_der_private_key)
        try:
            key = loader(data, password=password)
        except (ValueError, TypeError, UnsupportedAlgorithm) as error:
            raise errors.SigningError('Unable to parse account key: {0}'.format(error))
        if not isinstance(key, rsa.RSAPrivateKey):
            raise errors.SigningError(
                'Account key must be an RSA key, got {0}'.format(type(key).__name__))
        return cls(jose.JWKRSA(key=key))

    @property
    def key(self) -> jose.JWK:
        """Account private key."""
        return self._key

    @property
    def alg(self) -> jose.JWASignature:
        """Signature algorithm."""
        return self._alg

    @property
    def jwk(self) -> jose.JWK:
        """Public JWK embedded in every signed request."""
        return self._jwk

    @property
    def thumbprint(self) -> str:
        """RFC 7638 SHA-256 thumbprint of `jwk`, base64url without padding."""
        return self._thumbprint

    def sign(self, payload: Payload, nonce: Optional[str], url: Optional[str] = None) -> str:
        """Sign ``payload`` and return the compact JWS serialization.

        :param payload: Message to sign, a josepy object or a mapping.
        :param str nonce: Single-use anti-replay nonce (base64url).
        :param str url: Target URL, protected along with the nonce if given.

        :raises .SigningError: if the nonce is malformed or signing fails.

        """
        if isinstance(payload, jose.JSONDeSerializable):
            jobj = payload.json_dumps(indent=2).encode()
        else:
            jobj = json.dumps(payload, indent=2).encode()
        logger.debug('JWS payload:\n%s', jobj)
        try:
            if nonce is not None:
                jws.Header._fields['nonce'].decode(nonce)  # pylint: disable=protected-access
            signed = jws.JWS.sign(jobj, key=self._key, alg=self._alg,
                                  nonce=nonce, url=url)
        except (jose.Error, ValueError, TypeError) as error:
            raise errors.SigningError(str(error))
        return signed.to_compact().decode()

    def __repr__(self) -> str:
        return '{0}(thumbprint={1!r})'.format(self.__class__.__name__, self._thumbprint)
