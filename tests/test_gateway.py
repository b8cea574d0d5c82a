"""Tests for the custodian client and the signer gateways."""

import hashlib
import json
import time
from unittest.mock import Mock

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from errors import GatewayError, SubmissionError
from gateway import (
    CompletionStatus,
    CustodianAPIError,
    CustodianAuthError,
    CustodianClient,
    CustodianConnectionError,
    FireblocksGateway,
    SimulatedGateway,
    TaskKind,
    build_gateway,
    encode_call,
    map_chain_to_asset,
)

CONTRACT = '0x' + '11' * 20
DESTINATION = '0x' + '22' * 20
ONE_TOKEN = 10 ** 18


@pytest.fixture(scope='module')
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


def make_response(status_code=200, body=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = (text or '').encode()
    return response


@pytest.fixture
def client(rsa_keys):
    session = requests.Session()
    session.request = Mock(return_value=make_response(body={'ok': True}))
    return CustodianClient('https://custodian.test/', 'api-key-1', rsa_keys[0], timeout=5, session=session)


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(time, 'sleep', lambda seconds: None)


class TestCustodianClient:

    def test_headers(self, client):
        assert client.base_url == 'https://custodian.test'
        assert client.session.headers['X-API-Key'] == 'api-key-1'
        assert client.session.headers['Content-Type'] == 'application/json'

    def test_signed_post(self, client, rsa_keys):
        assert client.post('/v1/transactions', {'a': 1}) == {'ok': True}

        args, kwargs = client.session.request.call_args
        assert args == ('POST', 'https://custodian.test/v1/transactions')
        assert kwargs['data'] == b'{"a":1}'
        assert kwargs['timeout'] == 5

        token = kwargs['headers']['Authorization'].split(' ', 1)[1]
        claims = jwt.decode(token, rsa_keys[1], algorithms=['RS256'])
        assert claims['uri'] == '/v1/transactions'
        assert claims['sub'] == 'api-key-1'
        assert claims['bodyHash'] == hashlib.sha256(b'{"a":1}').hexdigest()
        assert claims['exp'] - claims['iat'] == 55
        assert len(claims['nonce']) == 32

    def test_get_signs_empty_body(self, client):
        client.get('/v1/transactions/t1')

        kwargs = client.session.request.call_args.kwargs
        assert kwargs['data'] is None
        claims = jwt.get_unverified_claims(kwargs['headers']['Authorization'].split(' ', 1)[1])
        assert claims['bodyHash'] == hashlib.sha256(b'').hexdigest()

    def test_nonce_changes(self, client):
        assert client.sign('/v1/x') != client.sign('/v1/x')

    def test_auth_error(self, client):
        client.session.request.return_value = make_response(401, {'message': 'Unauthorized'})
        with pytest.raises(CustodianAuthError):
            client.get('/v1/vault/accounts/1/ETH')

    def test_api_error_message(self, client):
        client.session.request.return_value = make_response(400, {'message': 'Invalid asset'})
        with pytest.raises(CustodianAPIError) as exc:
            client.post('/v1/transactions', {})
        assert exc.value.http_status == 400
        assert 'Invalid asset' in exc.value.message
        assert exc.value.details['path'] == '/v1/transactions'

    def test_invalid_json(self, client):
        client.session.request.return_value = make_response(200, text='<html>')
        with pytest.raises(CustodianAPIError, match='Invalid response format'):
            client.get('/v1/transactions/t1')

    def test_get_retries_transport_errors(self, client, no_sleep):
        client.session.request.side_effect = [
            requests.exceptions.ConnectionError('reset'),
            make_response(body={'status': 'COMPLETED'}),
        ]
        assert client.get('/v1/transactions/t1') == {'status': 'COMPLETED'}
        assert client.session.request.call_count == 2

    def test_get_gives_up(self, client, no_sleep):
        client.session.request.side_effect = requests.exceptions.Timeout('slow')
        with pytest.raises(CustodianConnectionError) as exc:
            client.get('/v1/transactions/t1')
        assert exc.value.timed_out
        assert client.session.request.call_count == 3

    def test_post_is_never_retried(self, client, no_sleep):
        client.session.request.side_effect = requests.exceptions.ConnectionError('reset')
        with pytest.raises(CustodianConnectionError):
            client.post('/v1/transactions', {'a': 1})
        assert client.session.request.call_count == 1

    def test_from_config(self, rsa_keys, tmp_path):
        key_file = tmp_path / 'custodian.key'
        key_file.write_text(rsa_keys[0])
        client = CustodianClient.from_config({
            'base_url': 'https://custodian.test',
            'api_key': 'k',
            'secret_key_path': str(key_file),
            'request_timeout_seconds': 12.0,
        })
        assert client.secret_key == rsa_keys[0]
        assert client.timeout == 12.0


class StubClient:
    """Answers GETs from a script of responses per path and records POSTs."""

    def __init__(self):
        self.responses = {}
        self.posts = []
        self.post_response = {'id': 'task-1', 'status': 'SUBMITTED'}
        self.closed = False

    def get(self, path):
        script = self.responses[path]
        result = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(result, Exception):
            raise result
        return result

    def post(self, path, payload):
        self.posts.append((path, payload))
        if isinstance(self.post_response, Exception):
            raise self.post_response
        return self.post_response

    def close(self):
        self.closed = True


@pytest.fixture
def stub_client():
    stub = StubClient()
    stub.responses['/v1/tokenization/tokens/tok-1'] = [{
        'id': 'tok-1',
        'status': 'COMPLETED',
        'blockchainId': 'ETH_TEST5',
        'tokenMetadata': {'contractAddress': CONTRACT, 'decimals': 18},
    }]
    return stub


@pytest.fixture
def fireblocks(stub_client):
    return FireblocksGateway(
        stub_client,
        {'min_gas_balance': '0.001', 'contract_template_id': 'tmpl-1'},
        poll_interval=0.01,
    )


def test_encode_call():
    assert encode_call('burn(uint256)', ['uint256'], [5]) == '0x42966c68' + format(5, '064x')
    assert encode_call('pause()', [], []) == '0x8456cb59'


class TestFireblocksGateway:

    @pytest.mark.asyncio
    async def test_gas_check(self, fireblocks, stub_client):
        stub_client.responses['/v1/vault/accounts/88/ETH_TEST5'] = [{'available': '0.5'}]
        gas = await fireblocks.ensure_gas_for_vault('88', '11155111')
        assert gas.sufficient
        assert gas.available == '0.5'
        assert gas.required == '0.001'

        stub_client.responses['/v1/vault/accounts/88/ETH_TEST5'] = [{'available': '0.0001'}]
        gas = await fireblocks.ensure_gas_for_vault('88', 'ETH_TEST5')
        assert not gas.sufficient

    @pytest.mark.asyncio
    async def test_vault_balance(self, fireblocks, stub_client):
        stub_client.responses['/v1/vault/accounts/7/MATIC'] = [{
            'id': 'MATIC', 'total': '12.50', 'balance': '12.50', 'available': '10.000', 'pending': '2.5',
        }]
        balance = await fireblocks.get_vault_balance('7', '137')

        assert balance.to_api() == {
            'vaultId': '7', 'assetId': 'MATIC', 'total': '12.5', 'available': '10', 'pending': '2.5',
        }

    @pytest.mark.asyncio
    async def test_vault_balance_defaults(self, fireblocks, stub_client):
        stub_client.responses['/v1/vault/accounts/88/ETH_TEST5'] = [{'available': '0.5'}]
        balance = await fireblocks.get_vault_balance('88', 'ETH_TEST5')
        assert (balance.total, balance.available, balance.pending) == ('0.5', '0.5', '0')

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[], {'available': 'lots'}, {'available': '1', 'pending': 'NaN'}])
    async def test_unreadable_vault_balance(self, fireblocks, stub_client, body):
        stub_client.responses['/v1/vault/accounts/88/ETH_TEST5'] = [body]
        with pytest.raises(GatewayError):
            await fireblocks.get_vault_balance('88', 'ETH_TEST5')
        with pytest.raises(GatewayError):
            await fireblocks.ensure_gas_for_vault('88', 'ETH_TEST5')

    @pytest.mark.asyncio
    async def test_mint_payload(self, fireblocks, stub_client):
        submission = await fireblocks.mint('88', 'ETH_TEST5', {
            'name': 'Gold Bar Token', 'symbol': 'GOLD', 'decimals': 18, 'totalSupply': '100',
        })

        assert submission.task_id == 'task-1'
        assert submission.kind is TaskKind.TOKEN_LINK
        path, payload = stub_client.posts[0]
        assert path == '/v1/tokenization/tokens'
        assert payload['vaultAccountId'] == '88'
        assert payload['assetId'] == 'ETH_TEST5'
        assert payload['createParams']['contractId'] == 'tmpl-1'
        params = {p['name']: p['value'] for p in payload['createParams']['deployFunctionParams']}
        assert params == {
            'name': 'Gold Bar Token',
            'symbol': 'GOLD',
            'decimals': '18',
            'totalSupply': str(100 * ONE_TOKEN),
        }

    @pytest.mark.asyncio
    async def test_burn_calldata(self, fireblocks, stub_client):
        await fireblocks.burn('88', 'tok-1', '1.5')

        path, payload = stub_client.posts[0]
        assert path == '/v1/transactions'
        assert payload['operation'] == 'CONTRACT_CALL'
        assert payload['source'] == {'type': 'VAULT_ACCOUNT', 'id': '88'}
        assert payload['destination']['oneTimeAddress']['address'] == CONTRACT
        assert payload['extraParameters']['contractCallData'] == \
            '0x42966c68' + format(3 * ONE_TOKEN // 2, '064x')

    @pytest.mark.asyncio
    async def test_withdraw_calldata(self, fireblocks, stub_client):
        await fireblocks.withdraw('88', 'tok-1', '2', DESTINATION)

        call_data = stub_client.posts[0][1]['extraParameters']['contractCallData']
        assert call_data == '0xa9059cbb' + '0' * 24 + '22' * 20 + format(2 * ONE_TOKEN, '064x')

    @pytest.mark.asyncio
    async def test_freeze_without_address_pauses(self, fireblocks, stub_client):
        await fireblocks.freeze('88', 'tok-1')
        assert stub_client.posts[0][1]['extraParameters']['contractCallData'] == '0x8456cb59'

    @pytest.mark.asyncio
    async def test_submission_errors(self, fireblocks, stub_client):
        stub_client.post_response = CustodianAPIError('Invalid vault', 400, '/v1/transactions')
        with pytest.raises(SubmissionError):
            await fireblocks.burn('88', 'tok-1', '1')

        stub_client.post_response = {'status': 'SUBMITTED'}
        with pytest.raises(SubmissionError, match='task id'):
            await fireblocks.burn('88', 'tok-1', '1')

        stub_client.post_response = {'id': 'task-9', 'status': 'BLOCKED'}
        with pytest.raises(SubmissionError):
            await fireblocks.burn('88', 'tok-1', '1')

    @pytest.mark.asyncio
    async def test_excess_precision_is_not_submitted(self, fireblocks, stub_client):
        with pytest.raises(SubmissionError):
            await fireblocks.burn('88', 'tok-1', '0.0000000000000000001')
        assert stub_client.posts == []

    @pytest.mark.asyncio
    async def test_await_token_link(self, fireblocks, stub_client):
        stub_client.responses['/v1/tokenization/tokens/tok-2'] = [
            {'id': 'tok-2', 'status': 'PENDING'},
            {'id': 'tok-2', 'status': 'COMPLETED', 'txHash': '0xdeploy',
             'tokenMetadata': {'contractAddress': CONTRACT}},
        ]
        completion = await fireblocks.await_completion('tok-2', 5, kind=TaskKind.TOKEN_LINK)

        assert completion.status is CompletionStatus.COMPLETED
        assert completion.contract_address == CONTRACT
        assert completion.token_id == 'tok-2'
        assert completion.tx_hash == '0xdeploy'

    @pytest.mark.asyncio
    async def test_await_transaction_survives_poll_errors(self, fireblocks, stub_client):
        stub_client.responses['/v1/transactions/task-1'] = [
            CustodianConnectionError('reset', '/v1/transactions/task-1'),
            {'status': 'CONFIRMING'},
            {'status': 'COMPLETED', 'txHash': '0xtx'},
        ]
        completion = await fireblocks.await_completion('task-1', 5)
        assert completion.status is CompletionStatus.COMPLETED
        assert completion.tx_hash == '0xtx'

    @pytest.mark.asyncio
    async def test_await_transaction_failure(self, fireblocks, stub_client):
        stub_client.responses['/v1/transactions/task-1'] = [
            {'status': 'FAILED', 'subStatus': 'INSUFFICIENT_FUNDS'},
        ]
        completion = await fireblocks.await_completion('task-1', 5)
        assert completion.status is CompletionStatus.FAILED
        assert completion.error_message == 'INSUFFICIENT_FUNDS'

    @pytest.mark.asyncio
    async def test_await_timeout(self, fireblocks, stub_client):
        stub_client.responses['/v1/transactions/task-1'] = [{'status': 'PENDING_SIGNATURE'}]
        completion = await fireblocks.await_completion('task-1', 0.05)
        assert completion.status is CompletionStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_close(self, fireblocks, stub_client):
        await fireblocks.close()
        assert stub_client.closed


@pytest.mark.asyncio
async def test_simulated_gateway_is_deterministic():
    first, second = SimulatedGateway(), SimulatedGateway()
    params = {'name': 'Gold', 'symbol': 'GOLD', 'decimals': 18, 'totalSupply': '1'}

    a = await first.mint('88', 'ETH_TEST5', params)
    b = await second.mint('88', 'ETH_TEST5', params)
    done_a = await first.await_completion(a.task_id, 1, kind=TaskKind.TOKEN_LINK)
    done_b = await second.await_completion(b.task_id, 1, kind=TaskKind.TOKEN_LINK)

    assert a.task_id.startswith('sim_')
    assert done_a.status is CompletionStatus.COMPLETED
    assert done_a.contract_address == done_b.contract_address
    assert len(done_a.contract_address) == 42
    assert done_a.token_id == a.task_id
    assert (await first.ensure_gas_for_vault('88', 'ETH_TEST5')).sufficient
    assert (await first.get_vault_balance('88', '11155111')).asset_id == 'ETH_TEST5'

    burn = await first.burn('88', a.task_id, '1')
    done = await first.await_completion(burn.task_id, 1)
    assert done.contract_address is None
    assert done.tx_hash.startswith('0x')


def test_map_chain_to_asset():
    assert map_chain_to_asset('11155111') == 'ETH_TEST5'
    assert map_chain_to_asset(137) == 'MATIC'
    assert map_chain_to_asset('MATIC_AMOY') == 'MATIC_AMOY'
    assert map_chain_to_asset(None) == 'ETH_TEST5'
    assert map_chain_to_asset('999999') == 'ETH_TEST5'


def test_build_gateway(rsa_keys, tmp_path):
    assert isinstance(build_gateway({'simulated': True}), SimulatedGateway)

    key_file = tmp_path / 'custodian.key'
    key_file.write_text(rsa_keys[0])
    gateway = build_gateway({
        'simulated': False,
        'base_url': 'https://custodian.test',
        'api_key': 'k',
        'secret_key_path': str(key_file),
    }, poll_interval=0.5)
    assert isinstance(gateway, FireblocksGateway)
    assert gateway.poll_interval == 0.5
