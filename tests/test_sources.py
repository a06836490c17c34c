import pytest
import requests

from txguard.errors import EvidenceUnavailable
from txguard.etherscan import EtherscanClient, CONTRACT_REGISTRY, CONTRACT_CODE
from txguard.simulator import TenderlyClient, parse_simulation, simulation_fallback, SIMULATOR

WALLET = "0x" + "11" * 20
OTHER = "0x" + "44" * 20
TOKEN = "0x" + "33" * 20


class FakeResponse:
    def __init__(self, payload=None, status=200, bad_json=False):
        self.payload = payload
        self.status_code = status
        self.bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self.bad_json:
            raise ValueError("Expecting value")
        return self.payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def _reply(self, **call):
        self.calls.append(call)
        if self.exc is not None:
            raise self.exc
        return self.response

    def get(self, url, params=None, timeout=None):
        return self._reply(url=url, params=params, timeout=timeout)

    def post(self, url, json=None, headers=None, timeout=None):
        return self._reply(url=url, json=json, headers=headers, timeout=timeout)


def etherscan(payload=None, **kw):
    session = FakeSession(FakeResponse(payload, **kw))
    return EtherscanClient("key", session=session), session


def source_code(**record):
    return {"status": "1", "message": "OK", "result": [record]}


# ------------------------------------------------------------------
#  Etherscan
# ------------------------------------------------------------------
def test_verified_contract():
    client, session = etherscan(source_code(
        SourceCode="contract WETH9 {}", ContractName="WETH9", CompilerVersion="v0.4.19", Proxy="0", Implementation="",
    ))
    info = client.get_contract_info(TOKEN, 1)
    assert info.is_verified and info.contract_name == "WETH9"
    assert info.compiler_version == "v0.4.19"
    assert not info.is_proxy
    params = session.calls[0]["params"]
    assert params["chainid"] == 1 and params["action"] == "getsourcecode" and params["apikey"] == "key"
    assert session.calls[0]["timeout"] == 3.0


def test_unverified_contract():
    client, _ = etherscan(source_code(SourceCode="", ContractName=""))
    info = client.get_contract_info(TOKEN, 1)
    assert not info.is_verified
    assert info.contract_name is None


def test_proxy_contract():
    impl = "0x" + "ab" * 20
    client, _ = etherscan(source_code(SourceCode="x", ContractName="FiatTokenProxy", Proxy="1", Implementation=impl))
    info = client.get_contract_info(TOKEN, 1)
    assert info.is_proxy and info.implementation == impl


def test_rejected_lookup():
    client, _ = etherscan({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
    with pytest.raises(EvidenceUnavailable) as exc:
        client.get_contract_info(TOKEN, 1)
    assert exc.value.source == CONTRACT_REGISTRY
    assert "Invalid API Key" in exc.value.reason


def test_unsupported_chain_and_missing_key_skip_network():
    client, session = etherscan(source_code())
    with pytest.raises(EvidenceUnavailable):
        client.get_contract_info(TOKEN, 56)
    with pytest.raises(EvidenceUnavailable):
        EtherscanClient(None, session=session).is_contract(TOKEN, 1)
    assert session.calls == []


def test_transport_and_payload_errors():
    client = EtherscanClient("key", session=FakeSession(exc=requests.ConnectionError("boom")))
    with pytest.raises(EvidenceUnavailable):
        client.get_contract_info(TOKEN, 1)
    client, _ = etherscan(bad_json=True)
    with pytest.raises(EvidenceUnavailable):
        client.get_contract_info(TOKEN, 1)
    client, _ = etherscan(status=502)
    with pytest.raises(EvidenceUnavailable):
        client.is_contract(TOKEN, 1)


def test_is_contract():
    client, session = etherscan({"jsonrpc": "2.0", "id": 1, "result": "0x6080604052"})
    assert client.is_contract(TOKEN, 1)
    assert session.calls[0]["params"]["action"] == "eth_getCode"
    client, _ = etherscan({"jsonrpc": "2.0", "id": 1, "result": "0x"})
    assert not client.is_contract(WALLET, 1)


def test_is_contract_rate_limited():
    client, _ = etherscan({"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
    with pytest.raises(EvidenceUnavailable) as exc:
        client.is_contract(TOKEN, 1)
    assert exc.value.source == CONTRACT_CODE


# ------------------------------------------------------------------
#  Tenderly
# ------------------------------------------------------------------
def tenderly_payload(status=True, to=OTHER, error=None):
    return {
        "transaction": {
            "status": status,
            "gas_used": 46000,
            "error_message": error,
            "transaction_info": {
                "logs": [{
                    "name": "Approval",
                    "raw": {"address": TOKEN.upper().replace("0X", "0x"), "topics": ["0x8c5be1e5"], "data": "0x01"},
                    "inputs": [{"soltype": {"name": "owner"}, "value": WALLET}],
                }],
            },
        },
        "simulation": {
            "id": "sim-1",
            "asset_changes": [{
                "type": "Transfer",
                "from": WALLET,
                "to": to,
                "amount": "1.5",
                "token_info": {"contract_address": TOKEN, "symbol": "USDC"},
            }],
        },
    }


def test_parse_outgoing_change_and_logs():
    result = parse_simulation(tenderly_payload(), wallet=WALLET)
    assert result.success and result.gas_used == "46000"
    change = result.balance_changes[0]
    assert (change.symbol, change.delta, change.is_increase) == ("USDC", "1.5", False)
    log = result.logs[0]
    assert log.address == TOKEN
    assert log.decoded.name == "Approval"
    assert log.decoded.params == {"owner": WALLET}


def test_incoming_change_compares_against_wallet():
    result = parse_simulation(tenderly_payload(to=WALLET.upper().replace("0X", "0x")), wallet=WALLET)
    assert result.balance_changes[0].is_increase


def test_failed_simulation():
    result = parse_simulation(tenderly_payload(status=False, error="execution reverted"), wallet=WALLET)
    assert not result.success
    assert result.error == "execution reverted"


def test_malformed_simulation_payload():
    with pytest.raises(EvidenceUnavailable) as exc:
        parse_simulation({"transaction": {"status": True}}, wallet=WALLET)
    assert exc.value.source == SIMULATOR
    with pytest.raises(EvidenceUnavailable):
        parse_simulation("oops", wallet=WALLET)


def test_simulate_request_shape():
    session = FakeSession(FakeResponse(tenderly_payload()))
    client = TenderlyClient("tkey", account="acme", project="guard", session=session)
    client.simulate(1, WALLET, TOKEN, "0", "0x", gas="0x5208")
    call = session.calls[0]
    assert call["url"] == "https://api.tenderly.co/api/v1/account/acme/project/guard/simulate"
    assert call["headers"]["X-Access-Key"] == "tkey"
    assert call["json"]["network_id"] == "1"
    assert call["json"]["gas"] == 21000
    assert call["timeout"] == 5.0


def test_simulate_errors():
    with pytest.raises(EvidenceUnavailable):
        TenderlyClient("tkey", session=FakeSession()).simulate(56, WALLET, TOKEN, "0", "0x")
    with pytest.raises(EvidenceUnavailable):
        TenderlyClient(None, session=FakeSession()).simulate(1, WALLET, TOKEN, "0", "0x")
    with pytest.raises(EvidenceUnavailable):
        TenderlyClient("tkey", session=FakeSession(FakeResponse(status=500))).simulate(1, WALLET, TOKEN, "0", "0x")


def test_simulation_fallback():
    fb = simulation_fallback()
    assert fb.success and fb.gas_used == "21000" and fb.balance_changes == []
