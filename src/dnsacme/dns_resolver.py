"""DNS Resolver for ACME client.

Used to wait until a published dns-01 TXT record is visible before the
server is asked to validate it.
"""
import asyncio
import datetime
import logging
from typing import List
from typing import Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from dnsacme import errors

logger = logging.getLogger(__name__)


async def txt_records_for_name(name: str) -> List[str]:
    """Resolve the name and return the TXT records.

    :param str name: Domain name being verified.

    :returns: A list of txt records, if empty the name does not exist (yet)
    :rtype: list of str

    :raises .DNSResolutionError: on any other resolution failure.

    """
    try:
        dns_response = await dns.asyncresolver.resolve(name, 'TXT')
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []
    except dns.exception.DNSException as error:
        logger.error('Error resolving %s: %s', name, str(error))
        raise errors.DNSResolutionError('Error resolving {0}: {1}'.format(name, error))

    return [txt_rec.decode('utf-8') for rdata in dns_response
            for txt_rec in rdata.strings]


async def wait_for_txt_record(name: str, value: str, interval: float = 5.0,
                              deadline: Optional[datetime.datetime] = None) -> None:
    """Wait until ``value`` is among the TXT records of ``name``.

    :param float interval: Seconds between lookups.
    :param datetime.datetime deadline: Give up after this moment.

    :raises .Cancelled: once ``deadline`` has passed.
    :raises .DNSResolutionError: on resolution failures other than the
        name or record not existing yet.

    """
    while True:
        records = await txt_records_for_name(name)
        if value in records:
            logger.info('TXT record for %s is visible', name)
            return
        logger.debug('TXT record for %s not visible yet, found %s', name, records)
        sleep = interval
        if deadline is not None:
            remaining = (deadline - datetime.datetime.now()).total_seconds()
            if remaining <= 0:
                raise errors.Cancelled('Timed out waiting for TXT record of {0}'.format(name))
            sleep = min(sleep, remaining)
        await asyncio.sleep(sleep)
