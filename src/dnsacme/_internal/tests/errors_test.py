"""Tests for dnsacme.errors."""
import asyncio
import sys
import unittest

import pytest


class BadNonceTest(unittest.TestCase):
    """Tests for dnsacme.errors.BadNonce."""

    def setUp(self):
        from dnsacme.errors import BadNonce
        self.error = BadNonce(nonce="xxx", error="error")

    def test_str(self):
        assert "Invalid nonce ('xxx'): error" == str(self.error)


class MissingNonceTest(unittest.TestCase):
    """Tests for dnsacme.errors.MissingNonce."""

    def setUp(self):
        from dnsacme.errors import MissingNonce
        self.error = MissingNonce({'Server': 'FOO'})

    def test_str(self):
        assert "FOO" in str(self.error)
        assert "replay nonce" in str(self.error)


class DirectoryErrorTest(unittest.TestCase):
    """Tests for dnsacme.errors.DirectoryError."""

    def test_str(self):
        from dnsacme.errors import DirectoryError
        error = DirectoryError(503, 'down for maintenance')
        assert error.status_code == 503
        assert str(error) == "Failed to get directory (HTTP 503): 'down for maintenance'"


class UnknownResourceErrorTest(unittest.TestCase):
    """Tests for dnsacme.errors.UnknownResourceError."""

    def test_str(self):
        from dnsacme.errors import UnknownResourceError
        assert 'revoke-cert' in str(UnknownResourceError('revoke-cert'))


class UnsupportedChallengeErrorTest(unittest.TestCase):
    """Tests for dnsacme.errors.UnsupportedChallengeError."""

    def test_str(self):
        from dnsacme.errors import UnsupportedChallengeError
        error = UnsupportedChallengeError(iter(['http-01', 'tls-alpn-01']), ['dns-01'])
        assert error.offered == ('http-01', 'tls-alpn-01')
        assert str(error) == ("Server did not issue a supported challenge. Received "
                              "'http-01', 'tls-alpn-01' but only 'dns-01' is supported.")

    def test_str_nothing_offered(self):
        from dnsacme.errors import UnsupportedChallengeError
        assert 'Received nothing' in str(UnsupportedChallengeError([], ['dns-01']))


class ProtocolErrorTest(unittest.TestCase):
    """Tests for dnsacme.errors.ProtocolError."""

    def test_str_body(self):
        from dnsacme.errors import ProtocolError
        error = ProtocolError(500, 'oops')
        assert error.problem is None
        assert str(error) == "Server returned HTTP 500: 'oops'"

    def test_str_problem(self):
        from dnsacme.errors import ProtocolError
        from dnsacme.messages import Error
        problem = Error(typ='urn:acme:error:unauthorized', detail='No registration exists')
        error = ProtocolError(403, problem.to_json(), problem)
        assert str(error).startswith('Server returned HTTP 403: urn:acme:error:unauthorized')
        assert 'No registration exists' in str(error)


class CancelledTest(unittest.TestCase):
    """Tests for dnsacme.errors.Cancelled."""

    def test_deadline_is_not_a_cancellation(self):
        from dnsacme.errors import Cancelled
        from dnsacme.errors import Error
        error = Cancelled('deadline')
        assert isinstance(error, Error)
        assert not isinstance(error, asyncio.CancelledError)

    def test_task_cancelled(self):
        from dnsacme.errors import Cancelled
        from dnsacme.errors import TaskCancelled
        error = TaskCancelled('cancelled')
        assert isinstance(error, Cancelled)
        assert isinstance(error, asyncio.CancelledError)


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
