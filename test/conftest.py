"""Shared fixtures: a prover wired to an in-memory host and signed proof fixtures."""

import hashlib
from dataclasses import dataclass

import pytest
from eth_account import Account
from eth_keys import keys
from web3 import Web3

from polymer_prover.config import ProverConfig
from polymer_prover.host import ExecutionHost
from polymer_prover.program import ProofProgram
from polymer_prover.transaction import Instruction, Transaction
from polymer_prover.verifier import HEADER_SIZE, signing_hash, storage_key

CLIENT_TYPE = "proof_api"
PEPTIDE_CHAIN_ID = 901
SOURCE_CHAIN_ID = 11155420
EMITTING_CONTRACT = bytes.fromhex("f221750e52aa080835d2957f2eed0d5d7ddd8c38")
SIGNER_PRIVATE_KEY = bytes.fromhex("4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")


@dataclass(frozen=True)
class ProofFixture:
    """A signed proof together with the values it should decode to."""
    proof: bytes
    chain_id: int
    emitting_contract: bytes
    topics: tuple[bytes, ...]
    unindexed_data: bytes


def _sha256(*parts: bytes) -> bytes:
    return hashlib.sha256(b"".join(parts)).digest()


def build_proof(
    signer: keys.PrivateKey,
    *,
    chain_id: int = SOURCE_CHAIN_ID,
    peptide_chain_id: int = PEPTIDE_CHAIN_ID,
    client_type: str = CLIENT_TYPE,
    emitting_contract: bytes = EMITTING_CONTRACT,
    topics: tuple[bytes, ...] = (),
    unindexed_data: bytes = b"",
    peptide_height: int = 1_234_567,
    block_height: int = 27_654_321,
    tx_index: int = 3,
    log_index: int = 1,
    leaf_prefix_size: int = 159,
    num_paths: int = 4,
    path_half_size: int = 124,
) -> bytes:
    """Build a proof whose membership path really hashes up to the signed app hash."""
    raw_event = emitting_contract + b"".join(topics) + unindexed_data
    event_end = HEADER_SIZE + len(raw_event)
    key = storage_key(chain_id, client_type, block_height, tx_index, log_index)

    leaf_prefix = bytes(i % 251 for i in range(leaf_prefix_size))
    node = _sha256(leaf_prefix, key, b"\x20", _sha256(bytes(Web3.keccak(raw_event))))
    paths = []
    for i in range(num_paths):
        prefix = bytes([i + 1]) * path_half_size
        suffix = bytes([0xF0 - i]) * path_half_size
        suffix_start = 2 + len(prefix)
        paths.append(bytes([suffix_start, suffix_start + len(suffix)]) + prefix + suffix)
        node = _sha256(prefix, node, suffix)
    app_hash = node
    membership = bytes([num_paths, 2 + len(leaf_prefix)]) + leaf_prefix + b"".join(paths)

    height = peptide_height.to_bytes(8, "big")
    signature = signer.sign_msg_hash(signing_hash(app_hash, height, peptide_chain_id))
    header = (
        app_hash
        + signature.r.to_bytes(32, "big")
        + signature.s.to_bytes(32, "big")
        + bytes([signature.v + 27])
        + chain_id.to_bytes(4, "big")
        + height
        + block_height.to_bytes(8, "big")
        + tx_index.to_bytes(2, "big")
        + bytes([log_index, len(topics)])
        + event_end.to_bytes(2, "big")
    )
    return header + raw_event + membership


@pytest.fixture
def signer_key():
    return keys.PrivateKey(SIGNER_PRIVATE_KEY)


@pytest.fixture
def signer_address(signer_key):
    return signer_key.public_key.to_canonical_address()


@pytest.fixture
def event_proof(signer_key):
    """The 1,500-byte proof for a three-topic event on chain 11155420."""
    topics = (
        bytes(Web3.keccak(text="Transfer(address,address,uint256)")),
        bytes(12) + bytes.fromhex("aa" * 20),
        bytes(12) + bytes.fromhex("bb" * 20),
    )
    data = bytes(range(100))
    proof = build_proof(signer_key, topics=topics, unindexed_data=data)
    assert len(proof) == 1500
    return ProofFixture(
        proof=proof,
        chain_id=SOURCE_CHAIN_ID,
        emitting_contract=EMITTING_CONTRACT,
        topics=topics,
        unindexed_data=data,
    )


@pytest.fixture
def prover_config():
    return ProverConfig()


@pytest.fixture
def host(prover_config):
    return ExecutionHost(config=prover_config.host)


@pytest.fixture
def program(host, prover_config):
    return ProofProgram(host, prover_config)


@pytest.fixture
def authority():
    return Account.from_key("0x" + "a1" * 32)


@pytest.fixture
def alice():
    return Account.from_key("0x" + "a2" * 32)


@pytest.fixture
def bob():
    return Account.from_key("0x" + "b3" * 32)


@pytest.fixture
def call(host, prover_config):
    """Sign an instruction with ``account`` and send it to the host."""
    def _call(account, name, *args, accounts=(), program_id=None, owner=None):
        instruction = Instruction(
            program_id=program_id or prover_config.program_id,
            name=name,
            owner=owner or account.address,
            args=tuple(args),
            accounts=tuple(accounts),
        )
        return host.send_transaction(Transaction.sign(instruction, account))
    return _call


@pytest.fixture
def initialized(program, call, authority, signer_address):
    """A prover whose trust anchor points at the fixture signer."""
    call(authority, "initialize", CLIENT_TYPE, signer_address, PEPTIDE_CHAIN_ID)
    return program
