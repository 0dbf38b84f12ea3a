"""Challenge selection and dns-01 validation values."""
import hashlib
import logging
from typing import Iterable
from typing import Sequence

import josepy as jose

from dnsacme import errors
from dnsacme import messages

logger = logging.getLogger(__name__)


class DNS01:
    """ACME dns-01 challenge."""
    typ = 'dns-01'

    LABEL = '_acme-challenge'
    """Label clients prepend to the domain name being validated."""


SUPPORTED_CHALLENGES = (DNS01.typ,)


def select_challenge(challbs: Sequence[messages.ChallengeBody],
                     supported: Iterable[str] = SUPPORTED_CHALLENGES
                     ) -> messages.ChallengeBody:
    """Pick the first offered challenge of a supported type.

    :param challbs: Challenges offered by the server, in server order.
    :param supported: Challenge types the caller can satisfy.

    :raises .UnsupportedChallengeError: if none of ``challbs`` is supported.

    """
    supported = tuple(supported)
    for challb in challbs:
        if challb.typ in supported:
            logger.debug('Selected %s challenge at %s', challb.typ, challb.uri)
            return challb
    raise errors.UnsupportedChallengeError(
        (challb.typ for challb in challbs), supported)


def key_authorization(token: str, thumbprint: str) -> str:
    """Key authorization for ``token``.

    :param str token: Challenge token, as sent by the server.
    :param str thumbprint: Account key thumbprint (base64url).

    """
    return token + '.' + thumbprint


def validation(key_authz: str) -> str:
    """dns-01 TXT record value for a key authorization."""
    return jose.b64encode(hashlib.sha256(key_authz.encode('utf-8')).digest()).decode()


def compute_validation_record(token: str, thumbprint: str) -> str:
    """TXT record value proving control of the account key for ``token``.

    :rtype: str

    """
    return validation(key_authorization(token, thumbprint))


def validation_domain_name(name: str) -> str:
    """Domain name for TXT validation record.

    :param str name: Domain name being validated.
    :rtype: str

    """
    return f'{DNS01.LABEL}.{name}'
