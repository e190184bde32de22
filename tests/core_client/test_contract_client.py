# tests/core_client/test_contract_client.py
import json
from unittest.mock import MagicMock

import pytest
from eth_abi import encode as abi_encode
from hexbytes import HexBytes

from dss_core.consensus.consensus_errors import BlockchainError, SubmissionError
from dss_core.core.datatypes import BlsProof, TaskRequest
from dss_core.core_client.abis import (
    FALLBACK_ABIS,
    SUBMIT_TASK_RESPONSE_BLS_SIG,
    SUBMIT_TASK_RESPONSE_SIG,
)
from dss_core.core_client.contract_client import (
    DEFAULT_GAS_LIMIT,
    MIN_GAS_LIMIT,
    TASK_REQUEST_TOPIC,
    DSSContractClient,
    load_abi,
)
from dss_core.crypto import bls
from dss_core.crypto.bls import BlsKeyPair

DSS_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CORE_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"

VAULTS = ["0x" + "11" * 20, "0x" + "22" * 20]


@pytest.fixture
def contracts():
    """Contract mocks keyed by lowercase address."""
    return {}


@pytest.fixture
def w3(contracts):
    w3 = MagicMock()

    def make_contract(address, abi):
        return contracts.setdefault(address.lower(), MagicMock(name=f"contract-{address}"))

    w3.eth.contract.side_effect = make_contract
    w3.eth.gas_price = 1_000_000_000
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.send_raw_transaction.return_value = HexBytes(b"\x12" * 32)
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 20}
    return w3


@pytest.fixture
def signer(accounts):
    account = MagicMock()
    account.address = accounts[0].address
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"signed")
    return account


@pytest.fixture
def client(w3, signer):
    return DSSContractClient(w3, DSS_ADDRESS, core_address=CORE_ADDRESS, account=signer)


def _task_log(value, block, log_index=0, sender=None, data=None):
    topics = [TASK_REQUEST_TOPIC]
    if sender is not None:
        topics.append(HexBytes(b"\x00" * 12 + bytes.fromhex(sender[2:])))
    return {
        "topics": topics,
        "data": HexBytes(data if data is not None else abi_encode(["uint256"], [value])),
        "blockNumber": block,
        "transactionHash": HexBytes(bytes([block]) * 32),
        "logIndex": log_index,
    }


def _dss_function(contracts):
    """The bound-function mock returned by get_function_by_signature."""
    dss = contracts[DSS_ADDRESS.lower()]
    factory = dss.get_function_by_signature.return_value
    fn_call = factory.return_value
    fn_call.estimate_gas.return_value = 100_000
    fn_call.build_transaction.side_effect = lambda params: dict(params)
    return dss, factory, fn_call


# --- ABI loading ---


def test_load_abi_fallback_without_dir():
    assert load_abi("SquareNumberDSS") == FALLBACK_ABIS["SquareNumberDSS"]


def test_load_abi_reads_artifact_and_bare_list(tmp_path):
    entry = [{"type": "function", "name": "ping", "inputs": [], "outputs": []}]
    (tmp_path / "Core.json").write_text(json.dumps({"abi": entry, "bytecode": "0x"}))
    (tmp_path / "Vault.json").write_text(json.dumps(entry))
    assert load_abi("Core", str(tmp_path)) == entry
    assert load_abi("Vault", str(tmp_path)) == entry


def test_load_abi_falls_back_on_bad_file(tmp_path):
    (tmp_path / "Core.json").write_text("{ nope")
    assert load_abi("Core", str(tmp_path)) == FALLBACK_ABIS["Core"]
    assert load_abi("Vault", str(tmp_path)) == FALLBACK_ABIS["Vault"]


# --- Event decoding ---


def test_get_task_requests_decodes_and_orders(client, w3, accounts):
    w3.eth.get_logs.return_value = [
        _task_log(9, 16, 0),
        _task_log(7, 15, 2, sender=accounts[1].address),
        _task_log(8, 15, 1),
    ]
    requests = client.get_task_requests(10)

    (filter_params,) = w3.eth.get_logs.call_args.args
    assert filter_params["fromBlock"] == 10
    assert filter_params["address"] == DSS_ADDRESS
    assert [(r.value, r.block_number) for r in requests] == [(8, 15), (7, 15), (9, 16)]
    assert requests[1].sender == accounts[1].address
    assert requests[1].transaction_hash == "0x" + "0f" * 32


def test_undecodable_log_is_skipped(client, w3):
    w3.eth.get_logs.return_value = [_task_log(0, 12, data=b""), _task_log(4, 13)]
    assert [r.value for r in client.get_task_requests(0)] == [4]


def test_log_query_failure_raises_blockchain_error(client, w3):
    w3.eth.get_logs.side_effect = ValueError("rpc unavailable")
    with pytest.raises(BlockchainError):
        client.get_task_requests(0)


# --- Stake ---


def test_operator_stake_sums_vault_assets(client, contracts, accounts):
    core = contracts[CORE_ADDRESS.lower()]
    core.functions.fetchVaultsStakedInDSS.return_value.call.return_value = VAULTS
    for vault, assets in zip(VAULTS, (10, 32)):
        vault_contract = MagicMock()
        vault_contract.functions.totalAssets.return_value.call.return_value = assets
        contracts[vault.lower()] = vault_contract

    assert client.get_operator_stake(accounts[0].address) == 42
    core.functions.fetchVaultsStakedInDSS.assert_called_once_with(accounts[0].address, DSS_ADDRESS)


def test_core_required_for_stake_and_registration(w3, signer, accounts):
    client = DSSContractClient(w3, DSS_ADDRESS, account=signer)
    with pytest.raises(BlockchainError):
        client.get_operator_stake(accounts[0].address)
    with pytest.raises(BlockchainError):
        client.register_operator_to_dss()


# --- Transactions ---


def test_submit_task_response_plain(client, contracts, w3, signer):
    dss, factory, fn_call = _dss_function(contracts)

    tx_hash = client.submit_task_response(TaskRequest(value=7, block_number=15), 49)

    assert tx_hash == "0x" + "12" * 32
    dss.get_function_by_signature.assert_called_once_with(SUBMIT_TASK_RESPONSE_SIG)
    factory.assert_called_once_with((7,), (49,))
    (params,) = fn_call.build_transaction.call_args.args
    assert params["gas"] == MIN_GAS_LIMIT
    assert params["nonce"] == 3
    assert params["from"] == signer.address
    w3.eth.send_raw_transaction.assert_called_once_with(b"signed")


def test_gas_headroom_and_fallback(client, contracts):
    _, _, fn_call = _dss_function(contracts)
    fn_call.estimate_gas.return_value = 1_000_000
    client.submit_task_response(TaskRequest(value=2, block_number=1), 4)
    assert fn_call.build_transaction.call_args.args[0]["gas"] == 1_500_000

    fn_call.estimate_gas.side_effect = ValueError("execution reverted")
    client.submit_task_response(TaskRequest(value=2, block_number=1), 4)
    assert fn_call.build_transaction.call_args.args[0]["gas"] == DEFAULT_GAS_LIMIT


def test_reverted_transaction_raises_submission_error(client, contracts, w3):
    _dss_function(contracts)
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 20}
    with pytest.raises(SubmissionError):
        client.submit_task_response(TaskRequest(value=7, block_number=15), 49)


def test_transaction_requires_account(w3):
    client = DSSContractClient(w3, DSS_ADDRESS, core_address=CORE_ADDRESS)
    with pytest.raises(BlockchainError):
        client.submit_task_response(TaskRequest(value=7, block_number=15), 49)


def test_submit_task_response_with_bls_proof(client, contracts):
    dss, factory, _ = _dss_function(contracts)
    signer_key = BlsKeyPair(secret_key=5)
    absent_key = BlsKeyPair(secret_key=6)
    signature = signer_key.sign_message_hash(bls.task_response_hash(49))
    proof = BlsProof(
        aggregated_signature=bls.g1_to_bytes(signature),
        aggregated_public_key=bls.g2_to_bytes(signer_key.g2_public_key),
        non_signer_public_keys=(bls.g1_to_bytes(absent_key.g1_public_key),),
    )

    client.submit_task_response(TaskRequest(value=7, block_number=15), 49, proof)

    dss.get_function_by_signature.assert_called_once_with(SUBMIT_TASK_RESPONSE_BLS_SIG)
    value, response, non_signers, agg_pubkey, agg_sign = factory.call_args.args
    assert (value, response) == ((7,), (49,))
    assert non_signers == [bls.g1_to_evm(absent_key.g1_public_key)]
    assert agg_pubkey == bls.g2_to_evm(signer_key.g2_public_key)
    assert agg_sign == bls.g1_to_evm(signature)


def test_register_operator_to_dss(client, contracts):
    core = contracts[CORE_ADDRESS.lower()]
    fn_call = core.functions.registerOperatorToDSS.return_value
    fn_call.estimate_gas.return_value = 300_000
    fn_call.build_transaction.side_effect = lambda params: dict(params)

    assert client.register_operator_to_dss(b"\x01\x02") == "0x" + "12" * 32
    core.functions.registerOperatorToDSS.assert_called_once_with(DSS_ADDRESS, b"\x01\x02")


def test_argument_errors_surface_as_blockchain_error(client, contracts, w3):
    dss, factory, _ = _dss_function(contracts)
    factory.side_effect = ValueError("argument does not match the ABI")
    with pytest.raises(BlockchainError):
        client.submit_task_response(TaskRequest(value=7, block_number=15), 49)

    malformed = BlsProof(
        aggregated_signature=b"\x01" * 64,
        aggregated_public_key=b"\x00" * 128,
    )
    with pytest.raises(BlockchainError):
        client.submit_task_response(TaskRequest(value=7, block_number=15), 49, malformed)
    w3.eth.send_raw_transaction.assert_not_called()
