"""Tests for dnsacme.client."""
import asyncio
import datetime
import json
import sys
import unittest
from unittest import mock

import josepy as jose
import pyrfc3339
import pytest

from dnsacme import challenges
from dnsacme import errors
from dnsacme import messages
from dnsacme._internal.tests import test_util
from dnsacme.jws import JWS

DIRECTORY_URL = 'https://example.com/directory'
NEW_REG_URI = 'https://example.com/acme/new-reg'
NEW_AUTHZ_URI = 'https://example.com/acme/new-authz'
NEW_CERT_URI = 'https://example.com/acme/new-cert'
REG_URI = 'https://example.com/acme/reg/1'
AUTHZ_URI = 'https://example.com/acme/authz/1'
CHALL_URI = 'https://example.com/acme/challenge/1/2'
CERT_URI = 'https://example.com/acme/cert/1'
TOS_URI = 'https://example.com/terms'

DIRECTORY = {
    'new-reg': NEW_REG_URI,
    'new-authz': NEW_AUTHZ_URI,
    'new-cert': NEW_CERT_URI,
    'meta': {'terms-of-service': TOS_URI},
}

PROBLEM = {
    'type': 'urn:acme:error:unauthorized',
    'detail': 'Account has not agreed to the current TOS',
}


def _payload(call):
    return json.loads(JWS.from_compact(call.args[1].encode()).payload.decode())


def _protected(call):
    return json.loads(JWS.from_compact(call.args[1].encode()).signature.protected)


def _authz(status='pending', challbs=None):
    if challbs is None:
        challbs = [
            {'type': 'http-01', 'uri': 'https://example.com/acme/challenge/1/1',
             'token': 'http-token'},
            {'type': 'dns-01', 'uri': CHALL_URI, 'token': 'abc'},
        ]
    return {
        'identifier': {'type': 'dns', 'value': 'example.com'},
        'status': status,
        'challenges': challbs,
    }


class ClientTestBase(unittest.IsolatedAsyncioTestCase):
    """Client against a mocked network."""

    def setUp(self):
        from dnsacme.client import Client
        self.account = test_util.load_account()
        self.get_responses = []

        async def get(url, accept=None):  # pylint: disable=unused-argument
            if url == DIRECTORY_URL:
                return test_util.response(200, DIRECTORY)
            return self.get_responses.pop(0)

        self.net = mock.MagicMock()
        self.net.get = mock.AsyncMock(side_effect=get)
        self.net.head = mock.AsyncMock(return_value=test_util.response(
            405, nonce='Tm9uY2U'))
        self.net.post = mock.AsyncMock()
        self.client = Client(DIRECTORY_URL, self.account, self.net)

        self.regr = messages.RegistrationResource(
            body=messages.Registration(contact=('mailto:admin@example.com',)),
            uri=REG_URI, terms_of_service=TOS_URI)
        self.authzr = messages.AuthorizationResource(
            body=messages.Authorization.from_json(_authz()), uri=AUTHZ_URI)


class RegistrationTest(ClientTestBase):
    """Tests for registration and Terms of Service agreement."""

    async def test_register(self):
        self.net.post.return_value = test_util.response(
            201, {'contact': ['mailto:admin@example.com']},
            links={'self': REG_URI, 'terms-of-service': TOS_URI})
        regr = await self.client.register('admin@example.com')

        assert regr.uri == REG_URI
        assert regr.status_code == 201
        assert regr.terms_of_service == TOS_URI
        assert regr.body.emails == ('admin@example.com',)
        call = self.net.post.call_args
        assert call.args[0] == NEW_REG_URI
        assert _payload(call) == {'resource': 'new-reg',
                                  'contact': ['mailto:admin@example.com']}
        assert _protected(call)['nonce'] == 'Tm9uY2U'

    async def test_register_twice(self):
        self.net.post.side_effect = [
            test_util.response(201, {'contact': ['mailto:admin@example.com']},
                               links={'self': REG_URI}),
            test_util.response(409, {'type': 'urn:acme:error:malformed',
                                     'detail': 'Registration key is already in use'},
                               links={'self': REG_URI}),
            test_util.response(202, {'contact': ['mailto:admin@example.com'],
                                     'agreement': TOS_URI},
                               links={'self': REG_URI}),
        ]
        first = await self.client.register('admin@example.com')
        second = await self.client.register('admin@example.com')

        assert first.uri == second.uri == REG_URI
        assert second.body.agreement == TOS_URI
        fetch = self.net.post.call_args_list[2]
        assert fetch.args[0] == REG_URI
        assert _payload(fetch) == {'resource': 'reg'}

    async def test_register_error(self):
        self.net.post.return_value = test_util.response(
            400, {'type': 'urn:acme:error:invalidEmail', 'detail': 'bad email'},
            content_type='application/problem+json', links={'self': NEW_REG_URI})
        with pytest.raises(errors.ProtocolError) as exc_info:
            await self.client.register('admin@')
        assert exc_info.value.status_code == 400
        assert exc_info.value.problem.code == 'invalidEmail'

    async def test_register_without_email(self):
        self.net.post.return_value = test_util.response(201, {}, links={'self': REG_URI})
        await self.client.register()
        assert _payload(self.net.post.call_args) == {'resource': 'new-reg'}

    async def test_accept_terms(self):
        self.net.post.return_value = test_util.response(
            202, {'contact': ['mailto:admin@example.com'], 'agreement': TOS_URI},
            links={'self': REG_URI})
        regr = await self.client.accept_terms(self.regr)

        assert regr.body.agreement == TOS_URI
        assert regr.terms_of_service == TOS_URI
        call = self.net.post.call_args
        assert call.args[0] == REG_URI
        assert _payload(call) == {'resource': 'reg', 'agreement': TOS_URI}

    async def test_accept_terms_from_directory(self):
        self.net.post.return_value = test_util.response(
            200, {'agreement': TOS_URI}, links={'self': REG_URI})
        regr = self.regr.update(terms_of_service=None)
        await self.client.accept_terms(regr)
        assert _payload(self.net.post.call_args)['agreement'] == TOS_URI

    async def test_accept_terms_already_accepted(self):
        regr = self.regr.update(body=self.regr.body.update(agreement=TOS_URI))
        assert await self.client.accept_terms(regr) is regr
        self.net.post.assert_not_called()

    async def test_accept_terms_refused(self):
        self.net.post.return_value = test_util.response(
            403, PROBLEM, links={'self': REG_URI})
        with pytest.raises(errors.ProtocolError):
            await self.client.accept_terms(self.regr, 'https://example.com/terms/v2')


class AuthorizationTest(ClientTestBase):
    """Tests for authorization and challenge handling."""

    async def test_authorize_domain(self):
        self.net.post.return_value = test_util.response(
            201, _authz(), links={'self': AUTHZ_URI})
        authzr = await self.client.authorize_domain('example.com')

        assert authzr.uri == AUTHZ_URI
        assert authzr.body.status == messages.STATUS_PENDING
        call = self.net.post.call_args
        assert call.args[0] == NEW_AUTHZ_URI
        assert _payload(call) == {'resource': 'new-authz',
                                  'identifier': {'type': 'dns', 'value': 'example.com'}}

    async def test_authorize_domain_refused(self):
        self.net.post.return_value = test_util.response(
            403, PROBLEM, links={'self': NEW_AUTHZ_URI})
        with pytest.raises(errors.ProtocolError) as exc_info:
            await self.client.authorize_domain('example.com')
        assert exc_info.value.body == PROBLEM

    async def test_authorize_domain_not_json(self):
        self.net.post.return_value = test_util.response(
            201, 'created', links={'self': AUTHZ_URI})
        with pytest.raises(errors.ProtocolError):
            await self.client.authorize_domain('example.com')

    async def test_nonces_are_reused(self):
        self.net.post.side_effect = [
            test_util.response(201, {}, nonce='bmV4dA', links={'self': REG_URI}),
            test_util.response(201, _authz(), nonce='bGFzdA', links={'self': AUTHZ_URI}),
        ]
        await self.client.register()
        await self.client.authorize_domain('example.com')

        first, second = self.net.post.call_args_list
        assert _protected(first)['nonce'] == 'Tm9uY2U'
        assert _protected(second)['nonce'] == 'bmV4dA'
        assert self.net.head.call_count == 1
        assert len(self.client.nonces) == 1

    async def test_submit_challenge_response(self):
        order = []

        async def ready():
            order.append('ready')

        def post(*unused_args, **unused_kwargs):
            order.append('post')
            return test_util.response(
                202, {'type': 'dns-01', 'uri': CHALL_URI, 'token': 'abc',
                      'keyAuthorization': 'abc.XYZ'},
                links={'self': CHALL_URI, 'up': AUTHZ_URI})
        self.net.post.side_effect = post

        challr = await self.client.submit_challenge_response(
            CHALL_URI, 'dns-01', 'abc.XYZ', ready=ready())

        assert order == ['ready', 'post']
        assert challr.uri == CHALL_URI
        assert challr.authzr_uri == AUTHZ_URI
        assert challr.body.key_authorization == 'abc.XYZ'
        assert _payload(self.net.post.call_args) == {
            'resource': 'challenge', 'type': 'dns-01', 'keyAuthorization': 'abc.XYZ'}

    async def test_submit_challenge_response_refused(self):
        self.net.post.return_value = test_util.response(
            400, PROBLEM, links={'self': CHALL_URI})
        with pytest.raises(errors.ProtocolError):
            await self.client.submit_challenge_response(CHALL_URI, 'dns-01', 'abc.XYZ')

    async def test_perform_dns01(self):
        ready = mock.AsyncMock()
        self.net.post.return_value = test_util.response(
            202, {'type': 'dns-01', 'uri': CHALL_URI, 'token': 'abc'},
            links={'self': CHALL_URI, 'up': AUTHZ_URI})
        self.get_responses.append(test_util.response(
            200, _authz('valid'), links={'self': AUTHZ_URI}))

        authzr = await self.client.perform_dns01(self.authzr, ready)

        assert authzr.body.status == messages.STATUS_VALID
        ready.assert_awaited_once_with(
            '_acme-challenge.example.com',
            challenges.compute_validation_record('abc', self.account.thumbprint))
        call = self.net.post.call_args
        assert call.args[0] == CHALL_URI
        assert _payload(call)['keyAuthorization'] == 'abc.' + self.account.thumbprint

    async def test_perform_dns01_not_pending(self):
        authzr = self.authzr.update(body=self.authzr.body.update(
            status=messages.STATUS_VALID))
        ready = mock.AsyncMock()
        assert await self.client.perform_dns01(authzr, ready) is authzr
        ready.assert_not_called()
        self.net.post.assert_not_called()

    async def test_perform_dns01_unsupported(self):
        authzr = self.authzr.update(body=messages.Authorization.from_json(_authz(challbs=[
            {'type': 'http-01', 'uri': 'https://example.com/chall/1', 'token': 'a'},
            {'type': 'tls-alpn-01', 'uri': 'https://example.com/chall/2', 'token': 'b'},
        ])))
        with pytest.raises(errors.UnsupportedChallengeError) as exc_info:
            await self.client.perform_dns01(authzr, mock.AsyncMock())
        assert exc_info.value.offered == ('http-01', 'tls-alpn-01')
        self.net.post.assert_not_called()


class PollAuthorizationTest(ClientTestBase):
    """Tests for dnsacme.client.Client.poll_authorization."""

    def _pending(self, retry_after=None):
        return test_util.response(202, _authz(), retry_after=retry_after,
                                  links={'self': AUTHZ_URI})

    def _valid(self):
        return test_util.response(200, _authz('valid'), links={'self': AUTHZ_URI})

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_retry_hints(self, mock_sleep):
        self.get_responses.extend([self._pending(1), self._pending(1), self._valid()])
        authzr = await self.client.poll_authorization(AUTHZ_URI)

        assert authzr.body.status == messages.STATUS_VALID
        assert authzr.status_code == 200
        assert mock_sleep.call_args_list == [mock.call(1), mock.call(1)]
        assert sum(call.args[0] for call in mock_sleep.call_args_list) == 2

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_default_retry_after(self, mock_sleep):
        self.get_responses.extend([self._pending(), self._valid()])
        await self.client.poll_authorization(AUTHZ_URI)
        mock_sleep.assert_called_once_with(5.0)

        self.get_responses.extend([self._pending(), self._valid()])
        await self.client.poll_authorization(AUTHZ_URI, default_retry_after=0.5)
        mock_sleep.assert_called_with(0.5)

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_zero_retry_after(self, mock_sleep):
        self.get_responses.extend([self._pending(0), self._pending(0), self._valid()])
        await self.client.poll_authorization(AUTHZ_URI, default_retry_after=3.0)
        assert mock_sleep.call_args_list == [mock.call(3.0), mock.call(3.0)]

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_pending_without_202_is_final(self, mock_sleep):
        self.get_responses.append(test_util.response(
            200, _authz(), links={'self': AUTHZ_URI}))
        authzr = await self.client.poll_authorization(AUTHZ_URI)
        assert authzr.body.status == messages.STATUS_PENDING
        mock_sleep.assert_not_called()

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_invalid(self, mock_sleep):
        self.get_responses.append(test_util.response(
            200, _authz('invalid'), links={'self': AUTHZ_URI}))
        authzr = await self.client.poll_authorization(AUTHZ_URI)
        assert authzr.body.status == messages.STATUS_INVALID
        mock_sleep.assert_not_called()

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_error_status(self, mock_sleep):
        self.get_responses.extend([self._pending(1), test_util.response(
            404, {'type': 'urn:acme:error:malformed'}, links={'self': AUTHZ_URI})])
        with pytest.raises(errors.ProtocolError) as exc_info:
            await self.client.poll_authorization(AUTHZ_URI)
        assert exc_info.value.status_code == 404
        assert mock_sleep.call_count == 1

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_deadline(self, mock_sleep):
        self.get_responses.extend([self._pending(10), self._valid()])
        deadline = datetime.datetime.now() - datetime.timedelta(seconds=1)
        with pytest.raises(errors.Cancelled) as exc_info:
            await self.client.poll_authorization(AUTHZ_URI, deadline=deadline)
        assert not isinstance(exc_info.value, asyncio.CancelledError)
        mock_sleep.assert_called_once_with(0.0)
        assert len(self.get_responses) == 1

    @mock.patch('dnsacme.client.asyncio.sleep')
    async def test_sleep_shortened_to_deadline(self, mock_sleep):
        self.get_responses.extend([self._pending(60), self._valid()])
        deadline = datetime.datetime.now() + datetime.timedelta(seconds=30)
        with pytest.raises(errors.Cancelled):
            await self.client.poll_authorization(AUTHZ_URI, deadline=deadline)
        delay = mock_sleep.call_args.args[0]
        assert 0 < delay <= 30

    async def test_task_cancelled(self):
        polled = asyncio.Event()

        async def get(url, accept=None):  # pylint: disable=unused-argument
            polled.set()
            return self._pending(3600)
        self.net.get.side_effect = get

        async def call():
            try:
                await self.client.poll_authorization(AUTHZ_URI)
            except errors.TaskCancelled as error:
                return error
            return None  # pragma: no cover

        task = asyncio.ensure_future(call())
        await polled.wait()
        await asyncio.sleep(0)
        task.cancel()
        error = await task
        assert isinstance(error, asyncio.CancelledError)
        assert isinstance(error, errors.Cancelled)
        assert isinstance(error.__cause__, asyncio.CancelledError)

    @unittest.skipUnless(hasattr(asyncio, 'TaskGroup'), 'asyncio.TaskGroup is unavailable')
    async def test_deadline_in_task_group(self):
        self.net.get.side_effect = None
        self.net.get.return_value = self._pending(10)
        deadline = datetime.datetime.now() + datetime.timedelta(milliseconds=50)
        with pytest.raises(BaseExceptionGroup) as exc_info:  # pylint: disable=undefined-variable
            async with asyncio.TaskGroup() as group:
                group.create_task(self.client.poll_authorization(
                    AUTHZ_URI, deadline=deadline))
        error, = exc_info.value.exceptions
        assert isinstance(error, errors.Cancelled)
        assert not isinstance(error, asyncio.CancelledError)


class CertificateTest(ClientTestBase):
    """Tests for certificate issuance and retrieval."""

    def setUp(self):
        super().setUp()
        self.csr = test_util.load_vector('csr.der')
        self.cert = b'\x30\x82\x01\x0a'

    async def test_request_certificate(self):
        self.net.post.return_value = test_util.response(
            201, self.cert, links={'self': CERT_URI, 'up': 'https://example.com/acme/issuer'})
        not_before = datetime.datetime(2016, 1, 1, tzinfo=datetime.timezone.utc)
        not_after = datetime.datetime(2016, 3, 31, tzinfo=datetime.timezone.utc)
        certr = await self.client.request_certificate(self.csr, not_before, not_after)

        assert certr.uri == CERT_URI
        assert certr.body == self.cert
        assert certr.cert_chain_uri == 'https://example.com/acme/issuer'
        call = self.net.post.call_args
        assert call.args[0] == NEW_CERT_URI
        assert call.kwargs['accept'] == 'application/pkix-cert'
        assert _payload(call) == {
            'resource': 'new-cert',
            'csr': jose.encode_b64jose(self.csr),
            'notBefore': '2016-01-01T00:00:00Z',
            'notAfter': '2016-03-31T00:00:00Z',
        }

    async def test_request_certificate_default_validity(self):
        self.net.post.return_value = test_util.response(201, self.cert,
                                                        links={'self': CERT_URI})
        await self.client.request_certificate(self.csr)
        payload = _payload(self.net.post.call_args)
        not_before = pyrfc3339.parse(payload['notBefore'])
        not_after = pyrfc3339.parse(payload['notAfter'])
        assert not_after - not_before == datetime.timedelta(days=90)
        assert payload['notBefore'].endswith('Z')

    async def test_request_certificate_without_body(self):
        self.net.post.return_value = test_util.response(201, links={'self': CERT_URI})
        certr = await self.client.request_certificate(self.csr)
        assert certr.body is None
        assert certr.cert_chain_uri is None

    async def test_request_certificate_refused(self):
        self.net.post.return_value = test_util.response(
            403, PROBLEM, content_type='application/problem+json',
            links={'self': NEW_CERT_URI})
        with pytest.raises(errors.ProtocolError) as exc_info:
            await self.client.request_certificate(self.csr)
        assert exc_info.value.status_code == 403
        assert exc_info.value.body == PROBLEM
        assert exc_info.value.problem.code == 'unauthorized'

    async def test_fetch_certificate(self):
        self.get_responses.append(test_util.response(200, self.cert))
        assert await self.client.fetch_certificate(CERT_URI) == self.cert
        self.net.get.assert_called_with(CERT_URI, accept='application/pkix-cert')

    async def test_fetch_certificate_pem(self):
        self.get_responses.append(test_util.response(200, '-----BEGIN CERTIFICATE-----\n'))
        assert await self.client.fetch_certificate(CERT_URI) == \
            b'-----BEGIN CERTIFICATE-----\n'

    async def test_fetch_certificate_not_found(self):
        self.get_responses.append(test_util.response(404, 'Not Found'))
        with pytest.raises(errors.ProtocolError) as exc_info:
            await self.client.fetch_certificate(CERT_URI)
        assert exc_info.value.body == 'Not Found'


class ClientLifecycleTest(unittest.IsolatedAsyncioTestCase):
    """Tests for dnsacme.client.Client construction and closing."""

    async def test_async_context_manager(self):
        from dnsacme.client import Client
        net = mock.MagicMock()
        async with Client(DIRECTORY_URL, test_util.load_account(), net) as client:
            assert client.net is net
            assert client.nonces.url == DIRECTORY_URL
        net.close.assert_called_once_with()

    def test_default_network(self):
        from dnsacme.client import Client
        from dnsacme.transport import ClientNetwork
        client = Client(DIRECTORY_URL, test_util.load_account())
        assert isinstance(client.net, ClientNetwork)
        client.close()


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
