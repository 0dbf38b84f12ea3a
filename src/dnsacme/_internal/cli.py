"""dnsacme command line interface.

Drives a single `dnsacme.client.Client` workflow per invocation. Each
verb returns the process exit code: 0 on success, 1 if the server
refused a step or any `dnsacme.errors.Error` was raised.

"""
import argparse
import asyncio
import datetime
import logging
import sys
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

import configargparse
from cryptography import x509
from cryptography.hazmat.primitives import serialization
import pyrfc3339

from dnsacme import __version__
from dnsacme import account as account_lib
from dnsacme import client
from dnsacme import dns_resolver
from dnsacme import errors
from dnsacme import messages
from dnsacme import transport
from dnsacme._internal import constants
from dnsacme._internal import log

logger = logging.getLogger(__name__)

Verb = Callable[[argparse.Namespace, client.Client], Awaitable[int]]


def flag_default(name: str) -> Any:
    """Default value for CLI flag."""
    return constants.CLI_DEFAULTS[name]


def _timestamp(value: str) -> datetime.datetime:
    try:
        return pyrfc3339.parse(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError('invalid RFC 3339 timestamp {0!r}: {1}'.format(
            value, error))


def read_file(path: str) -> bytes:
    """Read a file given on the command line.

    :raises .Error: if the file cannot be read.

    """
    try:
        with open(path, 'rb') as file_h:
            return file_h.read()
    except IOError as error:
        raise errors.Error('Unable to read {0}: {1}'.format(path, error))


def write_file(path: str, data: bytes) -> None:
    """Write ``data`` to a file given on the command line."""
    try:
        with open(path, 'wb') as file_h:
            file_h.write(data)
    except IOError as error:
        raise errors.Error('Unable to write {0}: {1}'.format(path, error))


def load_csr(data: bytes) -> bytes:
    """DER form of a PEM or DER encoded certificate signing request.

    :raises .Error: if ``data`` is not a CSR.

    """
    loader = (x509.load_pem_x509_csr if b'-----BEGIN' in data
              else x509.load_der_x509_csr)
    try:
        csr = loader(data)
    except ValueError as error:
        raise errors.Error('Unable to parse CSR: {0}'.format(error))
    return csr.public_bytes(serialization.Encoding.DER)


def _ask(prompt: str) -> Optional[str]:
    try:
        return input(prompt)
    except EOFError:
        return None


async def require_tos_agreement(terms_uri: str) -> bool:
    """Ask the user to agree to the Terms of Service.

    :returns: ``False`` if the input ended before the user agreed.

    """
    prompt = ('\nYou need to agree to the Terms of Service, which you can read at:\n\n'
              '{0}\n\n'
              "Enter 'agree' if you agree to the Terms of Service: ".format(terms_uri))
    while True:
        answer = await asyncio.to_thread(_ask, prompt)
        if answer is None:
            return False
        if answer.strip() == 'agree':
            return True


async def confirm_published(record_name: str, record_value: str) -> None:
    """Wait until the user says the TXT record was created."""
    answer = await asyncio.to_thread(_ask, 'Press Enter once the TXT record is published')
    if answer is None:
        raise errors.Error('Aborted while waiting for TXT record {0}'.format(record_name))


async def register(config: argparse.Namespace, acme: client.Client) -> int:
    """Register the account key and agree to the Terms of Service."""
    regr = await acme.register(config.email)
    terms_uri = regr.terms_of_service
    if terms_uri is None:
        terms_uri = (await acme.directory.get())['meta'].terms_of_service
    if terms_uri is not None and regr.body.agreement != terms_uri:
        if not config.agree_tos and not await require_tos_agreement(terms_uri):
            logger.error('Terms of Service were not accepted.')
            return constants.EXIT_FAILURE
        regr = await acme.accept_terms(regr, terms_uri)
    logger.info('Account registered at %s', regr.uri)
    return constants.EXIT_SUCCESS


async def authorize(config: argparse.Namespace, acme: client.Client) -> int:
    """Prove control of a domain with the dns-01 challenge."""
    deadline = None
    if config.poll_timeout is not None:
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=config.poll_timeout)

    async def ready(record_name: str, record_value: str) -> None:
        logger.info('Please create a TXT record:\n\n\t%s\n\t%s\n', record_name, record_value)
        if config.wait_dns:
            logger.info('Checking DNS records')
            await dns_resolver.wait_for_txt_record(
                record_name, record_value, interval=config.default_retry_after,
                deadline=deadline)
        else:
            await confirm_published(record_name, record_value)
        logger.info('Waiting for ACME server to verify DNS records')

    authzr = await acme.authorize_domain(config.domain)
    authzr = await acme.perform_dns01(
        authzr, ready, default_retry_after=config.default_retry_after, deadline=deadline)
    status = authzr.body.status or messages.STATUS_UNKNOWN
    if status != messages.STATUS_VALID:
        failures = [str(challb.error) for challb in authzr.body.challenges
                    if challb.error is not None]
        logger.error('Failed to meet DNS challenge for %s: authorization is %s%s',
                     config.domain, status.name,
                     ''.join('\n' + failure for failure in failures))
        return constants.EXIT_FAILURE
    logger.info('Created authorization at %s', authzr.uri)
    return constants.EXIT_SUCCESS


async def issue(config: argparse.Namespace, acme: client.Client) -> int:
    """Request a certificate for a CSR."""
    csr_der = load_csr(read_file(config.csr))
    certr = await acme.request_certificate(
        csr_der, not_before=config.not_before, not_after=config.not_after)
    logger.info('Certificate issued! Download it at %s', certr.uri)
    if config.out is not None:
        body = certr.body
        if body is None:
            body = await acme.fetch_certificate(certr.uri)
        write_file(config.out, body)
        logger.info('Written certificate to %s', config.out)
    return constants.EXIT_SUCCESS


async def fetch(config: argparse.Namespace, acme: client.Client) -> int:
    """Download an issued certificate."""
    cert = await acme.fetch_certificate(config.uri)
    if config.out is None:
        sys.stdout.buffer.write(cert)
        sys.stdout.flush()
    else:
        write_file(config.out, cert)
        logger.info('Written certificate to %s', config.out)
    return constants.EXIT_SUCCESS


VERBS: Dict[str, Verb] = {
    'register': register,
    'authorize': authorize,
    'issue': issue,
    'fetch': fetch,
}


def prepare_parser() -> configargparse.ArgParser:
    """Build the command line parser."""
    config_files = flag_default('config_files')
    parser = configargparse.ArgParser(
        prog='dnsacme',
        description='Obtain certificates from an ACME server using the dns-01 challenge.',
        args_for_setting_config_path=['-c', '--config'],
        default_config_files=config_files,
        config_arg_help_message='path to config file (default: {0})'.format(
            ' and '.join(config_files)),
        auto_env_var_prefix=constants.ENV_VAR_PREFIX)

    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    parser.add_argument('--server', default=flag_default('server'),
                        help='ACME directory URI.')
    parser.add_argument('--account-key', default=flag_default('account_key'),
                        help='Path to the PEM or DER encoded RSA account key.')
    parser.add_argument('--user-agent', default=flag_default('user_agent'),
                        help='User-Agent header sent with every request.')
    parser.add_argument('--timeout', type=int, default=flag_default('timeout'),
                        help='Network timeout of a single request, in seconds.')
    parser.add_argument('--no-verify-ssl', action='store_true',
                        default=flag_default('no_verify_ssl'),
                        help='Disable verification of the server certificate.')
    parser.add_argument('-v', '--verbose', dest='verbose_count', action='count',
                        default=flag_default('verbose_count'),
                        help='This flag can be used multiple times to incrementally '
                             'increase the verbosity of output, e.g. -vv.')
    parser.add_argument('--log-file', default=flag_default('log_file'),
                        help='Write a debug log to this file.')
    parser.add_argument('--max-log-backups', type=int,
                        default=flag_default('max_log_backups'),
                        help='Number of rotated debug logs to keep.')

    parser.add_argument('verb', choices=list(VERBS), metavar='COMMAND',
                        help='One of: {0}.'.format(', '.join(VERBS)))
    parser.add_argument('uri', nargs='?', default=None,
                        help='Certificate URI, for the fetch command.')

    register_group = parser.add_argument_group('register', 'Register an account.')
    register_group.add_argument('--email', default=flag_default('email'),
                                help='Contact email address(es), comma separated.')
    register_group.add_argument('--agree-tos', action='store_true',
                                default=flag_default('agree_tos'),
                                help="Agree to the server's Terms of Service without asking.")

    authorize_group = parser.add_argument_group(
        'authorize', 'Prove control of a domain with the dns-01 challenge.')
    authorize_group.add_argument('--domain', default=flag_default('domain'),
                                 help='Domain to authorize.')
    authorize_group.add_argument('--wait-dns', action='store_true',
                                 default=flag_default('wait_dns'),
                                 help='Poll DNS until the TXT record is visible '
                                      'instead of asking for confirmation.')
    authorize_group.add_argument('--poll-timeout', type=float,
                                 default=flag_default('poll_timeout'),
                                 help='Give up waiting for validation after this '
                                      'many seconds.')
    authorize_group.add_argument('--default-retry-after', type=float,
                                 default=flag_default('default_retry_after'),
                                 help='Seconds between polls when the server gives '
                                      'no Retry-After hint.')

    issue_group = parser.add_argument_group('issue and fetch', 'Obtain a certificate.')
    issue_group.add_argument('--csr', default=flag_default('csr'),
                             help='Path to the PEM or DER encoded CSR.')
    issue_group.add_argument('--out', default=flag_default('out'),
                             help='Write the certificate to this file. fetch writes '
                                  'to stdout otherwise.')
    issue_group.add_argument('--not-before', type=_timestamp,
                             default=flag_default('not_before'),
                             help='RFC 3339 start of validity, defaults to now.')
    issue_group.add_argument('--not-after', type=_timestamp,
                             default=flag_default('not_after'),
                             help='RFC 3339 end of validity, defaults to 90 days from now.')

    return parser


REQUIRED_FLAGS = {
    'authorize': ('domain', '--domain'),
    'issue': ('csr', '--csr'),
    'fetch': ('uri', 'URI'),
}


def parse_args(cli_args: List[str]) -> argparse.Namespace:
    """Parse the command line and check what the selected verb needs.

    :raises .Error: if an argument required by the verb is missing.

    """
    config = prepare_parser().parse_args(cli_args)
    if config.verb in REQUIRED_FLAGS:
        dest, flag = REQUIRED_FLAGS[config.verb]
        if getattr(config, dest) is None:
            raise errors.Error('{0} is required by the {1} command'.format(flag, config.verb))
    return config


async def run(config: argparse.Namespace) -> int:
    """Run the verb selected in ``config``.

    Errors are handled inside the coroutine, a `.TaskCancelled` error would
    otherwise lose its type when it leaves `asyncio.run`.

    """
    try:
        account = account_lib.Account.load(read_file(config.account_key))
        logger.debug('Loaded %r', account)
        net = transport.ClientNetwork(verify_ssl=not config.no_verify_ssl,
                                      user_agent=config.user_agent,
                                      timeout=config.timeout)
        acme = client.Client(config.server, account, net)
        try:
            return await VERBS[config.verb](config, acme)
        finally:
            acme.close()
    except errors.ProtocolError as error:
        logger.error('Server refused the request.\n\n%s', error)
    except errors.Error as error:
        logger.error('%s', error)
    logger.debug('Exiting with message', exc_info=True)
    return constants.EXIT_FAILURE


def main(cli_args: Optional[List[str]] = None) -> int:
    """Command line entry point.

    :param list cli_args: command line to run, defaults to ``sys.argv[1:]``

    :returns: process exit code
    :rtype: int

    """
    if cli_args is None:
        cli_args = sys.argv[1:]
    try:
        config = parse_args(cli_args)
        log.setup_logging(config.verbose_count, config.log_file, config.max_log_backups)
    except errors.Error as error:
        print(error, file=sys.stderr)
        return constants.EXIT_FAILURE
    return asyncio.run(run(config))


if __name__ == '__main__':
    sys.exit(main())  # pragma: no cover
