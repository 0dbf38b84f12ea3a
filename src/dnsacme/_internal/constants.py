"""dnsacme constants."""
import logging
import os
from typing import Any
from typing import Dict

from dnsacme import client
from dnsacme import transport

STAGING_URI = 'https://acme-staging.api.letsencrypt.org/directory'
"""Directory of the Let's Encrypt staging server."""

CLI_DEFAULTS: Dict[str, Any] = dict(  # noqa
    config_files=[
        '/etc/dnsacme/cli.ini',
        # https://freedesktop.org/wiki/Software/xdg-user-dirs/
        os.path.join(os.environ.get('XDG_CONFIG_HOME', '~/.config'),
                     'dnsacme', 'cli.ini'),
    ],

    # Main parser
    server=STAGING_URI,
    account_key='account.pem',
    user_agent='dnsacme',
    timeout=transport.DEFAULT_NETWORK_TIMEOUT,
    no_verify_ssl=False,
    verbose_count=0,
    log_file=None,
    max_log_backups=10,

    # register
    email=None,
    agree_tos=False,

    # authorize
    domain=None,
    wait_dns=False,
    poll_timeout=None,
    default_retry_after=client.DEFAULT_RETRY_AFTER,

    # issue / fetch
    csr=None,
    out=None,
    not_before=None,
    not_after=None,
)
"""Defaults for CLI flags."""

ENV_VAR_PREFIX = 'DNSACME_'
"""Prefix of environment variables that set CLI flags."""

DEFAULT_LOGGING_LEVEL = logging.INFO
"""Terminal logging level without ``-v``."""

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
