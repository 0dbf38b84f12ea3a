"""ACME-specific JWS.

The JWS implementation in josepy only implements the base JOSE standard. In
order to support the anti-replay nonce required by ACME, this module defines
ACME-specific classes that layer on top of josepy.
"""
from typing import Optional

import josepy as jose


class Header(jose.Header):
    """ACME-specific JOSE Header. Implements nonce and url.

    The nonce is kept as the base64url string the server sent, so it is
    echoed back byte for byte.

    """
    nonce: Optional[str] = jose.field('nonce', omitempty=True)
    url: Optional[str] = jose.field('url', omitempty=True)

    # Mypy does not understand the josepy magic happening here, and falsely claims
    # that nonce is redefined. Let's ignore the type check here.
    @nonce.decoder  # type: ignore[no-redef,attr-defined,union-attr]
    def nonce(value: str) -> str:  # type: ignore[misc]  # pylint: disable=no-self-argument,missing-function-docstring
        try:
            jose.decode_b64jose(value)
        except jose.DeserializationError as error:
            raise jose.DeserializationError("Invalid nonce: {0}".format(error))
        return value


class Signature(jose.Signature):
    """ACME-specific Signature. Uses ACME-specific Header for customer fields."""
    __slots__ = jose.Signature._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access,no-member

    header_cls = Header
    header: Header = jose.field(
        'header', omitempty=True, default=header_cls(),
        decoder=header_cls.from_json)


class JWS(jose.JWS):
    """ACME-specific JWS. Everything, including the jwk, is protected.

    Keeping the whole header protected is what allows the compact
    serialization, which has no room for an unprotected header.

    """
    signature_cls = Signature
    __slots__ = jose.JWS._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access

    @classmethod
    # type: ignore[override]  # pylint: disable=arguments-differ
    def sign(cls, payload: bytes, key: jose.JWK, alg: jose.JWASignature, nonce: Optional[str],
             url: Optional[str] = None) -> jose.JWS:
        protect = {'alg', 'jwk', 'nonce'}
        if url is not None:
            protect.add('url')
        kwargs = {'nonce': nonce}
        if url is not None:
            kwargs['url'] = url
        return super().sign(payload, key=key, alg=alg, protect=frozenset(protect),
                            include_jwk=True, **kwargs)
