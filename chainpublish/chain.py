# chain.py
# Chain access: one signing account over a web3 HTTP provider.
# Contract creation from raw (linked) bytecode + ComplianceDefinition.updateConstraint.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from chainpublish.config import get_logger
from chainpublish.errors import BroadcastError, ChainConfigError, DeploymentFailedError
from chainpublish.linker import link_bytecode

logger = get_logger(__name__)

GAS_HEADROOM = 1.2
RECEIPT_TIMEOUT = 180

# requests.ConnectionError and friends are OSError subclasses
NODE_ERRORS = (Web3Exception, ValueError, OSError)

COMPLIANCE_DEFINITION_ABI = [{
  "inputs": [
    {"internalType": "address", "name": "newVerifier", "type": "address"},
    {"internalType": "bytes32", "name": "newParamsRoot", "type": "bytes32"},
    {"internalType": "uint256", "name": "tStart", "type": "uint256"},
    {"internalType": "uint256", "name": "tEnd", "type": "uint256"},
    {"internalType": "string", "name": "metadataHash", "type": "string"}
  ],
  "name": "updateConstraint", "outputs": [],
  "stateMutability": "nonpayable", "type": "function"
}]


@dataclass(frozen=True)
class DeployOutput:
    deployed_address: str   # checksummed 0x address
    transaction_hash: str   # 0x + 64 hex


def _signed_raw_bytes(signed):
    # eth-account >= 0.13: raw_transaction ; older: rawTransaction
    return getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")


class ChainClient:
    def __init__(self, w3, account, receipt_timeout: float = RECEIPT_TIMEOUT):
        self.w3 = w3
        self.account = account
        self.receipt_timeout = receipt_timeout
        self._chain_id: Optional[int] = None

    @classmethod
    def connect(cls, rpc_url: str, private_key: str, **kwargs) -> "ChainClient":
        if not rpc_url or not rpc_url.startswith(("http://", "https://")):
            raise ChainConfigError(f"invalid RPC URL: {rpc_url}")
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        try:
            account = w3.eth.account.from_key(private_key)
        except Exception as e:
            raise ChainConfigError(f"failed to parse private key: {e}") from e
        return cls(w3, account, **kwargs)

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(self.w3.eth.chain_id)
            except NODE_ERRORS as e:
                raise ChainConfigError(f"failed to query chain ID from RPC: {e}") from e
        return self._chain_id

    def _fees(self) -> dict:
        block = self.w3.eth.get_block("pending")
        base = block.get("baseFeePerGas")
        if base is None:
            # pre-London node: legacy pricing
            return {"gasPrice": self.w3.eth.gas_price}
        max_priority = self.w3.to_wei(2, "gwei")
        return {"maxFeePerGas": base * 2 + max_priority, "maxPriorityFeePerGas": max_priority}

    def _base_tx(self) -> dict:
        try:
            nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
            fees = self._fees()
        except NODE_ERRORS as e:
            raise BroadcastError(f"failed to prepare transaction: {e}") from e
        return {
            "from": self.account.address,
            "nonce": nonce,
            "chainId": self.chain_id,
            **fees,
        }

    def _send(self, tx: dict, what: str):
        try:
            if "gas" not in tx:
                tx["gas"] = int(self.w3.eth.estimate_gas(tx) * GAS_HEADROOM)
            signed = self.w3.eth.account.sign_transaction(tx, self.account.key)
            tx_hash = self.w3.eth.send_raw_transaction(_signed_raw_bytes(signed))
        except NODE_ERRORS as e:
            raise BroadcastError(f"failed to broadcast {what}: {e}") from e
        txh = Web3.to_hex(tx_hash)
        logger.debug("%s broadcast: %s", what, txh)

        try:
            rcpt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise DeploymentFailedError(f"{what} {txh} not mined within {self.receipt_timeout}s") from e
        except NODE_ERRORS as e:
            raise DeploymentFailedError(f"failed to fetch receipt for {what} {txh}: {e}") from e
        return txh, rcpt

    def deploy(self, bytecode: bytes) -> DeployOutput:
        tx = self._base_tx()
        tx["data"] = Web3.to_hex(bytecode)
        txh, rcpt = self._send(tx, "contract deployment")

        if rcpt.get("status") == 0:
            raise DeploymentFailedError(f"contract deployment transaction {txh} reverted")
        addr = rcpt.get("contractAddress")
        if not addr:
            raise DeploymentFailedError(f"no contract address in deployment receipt {txh}")
        return DeployOutput(deployed_address=Web3.to_checksum_address(addr), transaction_hash=txh)

    def update_constraint(self, definition: str, verifier: str, params_root: str,
                          t_start: int, t_end: int, metadata_uri: str) -> str:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(definition),
                                        abi=COMPLIANCE_DEFINITION_ABI)
        fn = contract.functions.updateConstraint(
            Web3.to_checksum_address(verifier), params_root, int(t_start), int(t_end), metadata_uri
        )
        try:
            tx = fn.build_transaction(self._base_tx())
        except NODE_ERRORS as e:
            raise BroadcastError(f"failed to build updateConstraint transaction: {e}") from e
        txh, rcpt = self._send(tx, "updateConstraint transaction")
        if rcpt.get("status") == 0:
            raise DeploymentFailedError(f"updateConstraint transaction {txh} reverted")
        return txh


def deploy_from_artifact(client: ChainClient, artifact_path, constructor_args: Optional[bytes] = None) -> DeployOutput:
    """Link (deploying missing libraries first) and deploy the contract in `artifact_path`."""
    code = link_bytecode(artifact_path, client.deploy, constructor_args)
    return client.deploy(code)


def encode_address_argument(client: ChainClient, address: str) -> bytes:
    return client.w3.codec.encode(["address"], [Web3.to_checksum_address(address)])
