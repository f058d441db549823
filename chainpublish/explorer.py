"""
explorer.py: contract verification on Etherscan (or a compatible explorer) via the v2 API

Flow: build standard JSON input -> POST verifysourcecode (retried) -> poll
checkverifystatus until a terminal outcome. Verification is best-effort: every
problem on this path ends in a Failed/Skipped outcome, never an exception.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Union

import requests

from chainpublish.config import DEFAULT_VERIFICATION, ETHERSCAN_V2_API, VerificationConfig, get_logger
from chainpublish.errors import PublishError, VerificationTimeoutError, VerificationTransportError
from chainpublish.standard_input import build_standard_json_input

logger = get_logger(__name__)

STATUS_PENDING = "Pending in queue"
STATUS_VERIFIED = "Pass - Verified"
STATUS_ALREADY_VERIFIED = "Already Verified"


# ---- outcomes ---------------------------------------------------------------

@dataclass(frozen=True)
class Verified:
    def __str__(self): return "verified"


@dataclass(frozen=True)
class AlreadyVerified:
    def __str__(self): return "already_verified"


@dataclass(frozen=True)
class Failed:
    reason: str

    def __str__(self): return f"failed: {self.reason}"


@dataclass(frozen=True)
class Skipped:
    def __str__(self): return "skipped"


VerificationOutcome = Union[Verified, AlreadyVerified, Failed, Skipped]


@dataclass(frozen=True)
class VerifyArgs:
    etherscan_api_key: Optional[str] = None
    verifier_url: Optional[str] = None

    @property
    def api_key(self) -> Optional[str]:
        return self.etherscan_api_key or None

    @property
    def base_url(self) -> str:
        return self.verifier_url or ETHERSCAN_V2_API


@dataclass(frozen=True)
class VerificationRequest:
    standard_json_input: str
    compiler_version: str
    chain_id: int
    contract_address: str
    contract_name: str          # fully-qualified, e.g. "src/Verifier.sol:HonkVerifier"
    constructor_args: str = ""  # ABI-encoded hex, no 0x


# ---- explorer links ---------------------------------------------------------

EXPLORERS = {
    1: "https://etherscan.io",
    11155111: "https://sepolia.etherscan.io",
    8453: "https://basescan.org",
    42161: "https://arbiscan.io",
    137: "https://polygonscan.com",
    10: "https://optimistic.etherscan.io",
}

NETWORKS = {
    1: "Mainnet",
    11155111: "Sepolia",
    8453: "Base",
    84532: "Base Sepolia",
    42161: "Arbitrum One",
    421614: "Arbitrum Sepolia",
    10: "Optimism",
    11155420: "Optimism Sepolia",
    137: "Polygon",
}


def explorer_url(chain_id: int) -> str:
    return EXPLORERS.get(chain_id, "https://etherscan.io")


def network_name(chain_id: int) -> str:
    return NETWORKS.get(chain_id, "unknown network")


# ---- protocol ---------------------------------------------------------------

def _explorer_result(resp) -> tuple[str, str]:
    try:
        resp.raise_for_status()
        body = resp.json()
        return str(body["status"]), str(body["result"])
    except requests.RequestException as e:
        raise VerificationTransportError(f"explorer HTTP error: {e}") from e
    except (ValueError, KeyError, TypeError) as e:
        raise VerificationTransportError(f"failed to parse explorer response: {e}") from e


def _submit_once(session, req: VerificationRequest, api_key: str, base_url: str, timeout: float) -> str:
    form = {
        "module": "contract",
        "action": "verifysourcecode",
        "contractaddress": req.contract_address,
        "sourceCode": req.standard_json_input,
        "codeformat": "solidity-standard-json-input",
        "contractname": req.contract_name,
        "compilerversion": req.compiler_version,
        "constructorArguments": req.constructor_args,
    }
    try:
        resp = session.post(
            base_url,
            params={"chainid": str(req.chain_id), "apikey": api_key},
            data=form,
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise VerificationTransportError(f"failed to send verification request: {e}") from e

    status, result = _explorer_result(resp)
    if status != "1":
        raise VerificationTransportError(f"verification submission failed: {result}")
    return result


def submit_verification(session, req: VerificationRequest, api_key: str, base_url: str,
                        config: VerificationConfig = DEFAULT_VERIFICATION) -> Union[str, Failed]:
    """Submit `req`; returns the job guid, or Failed(last error) once retries run out."""
    attempts = config.submit_retries
    for attempt in range(1, attempts + 1):
        logger.info("submission attempt %d/%d...", attempt, attempts)
        try:
            return _submit_once(session, req, api_key, base_url, config.request_timeout)
        except VerificationTransportError as e:
            if attempt < attempts:
                logger.warning("attempt %d failed: %s, retrying in %ss...",
                               attempt, e, config.submit_retry_delay)
                time.sleep(config.submit_retry_delay)
            else:
                logger.error("all %d attempts failed: %s", attempts, e)
                return Failed(str(e))
    return Failed("no submission attempts configured")


def poll_status(session, guid: str, chain_id: int, api_key: str, base_url: str,
                config: VerificationConfig = DEFAULT_VERIFICATION) -> VerificationOutcome:
    params = {
        "chainid": str(chain_id),
        "module": "contract",
        "action": "checkverifystatus",
        "guid": guid,
        "apikey": api_key,
    }
    limit = config.max_poll_attempts
    for attempt in range(1, limit + 1):
        time.sleep(config.poll_interval)
        try:
            resp = session.get(base_url, params=params, timeout=config.request_timeout)
        except requests.RequestException as e:
            return Failed(f"failed to poll verification status: {e}")
        try:
            _, result = _explorer_result(resp)
        except VerificationTransportError as e:
            return Failed(str(e))

        logger.info("verification check (%d/%d): %s", attempt, limit, result)
        if result == STATUS_PENDING:
            continue
        if result == STATUS_VERIFIED:
            return Verified()
        if result == STATUS_ALREADY_VERIFIED:
            return AlreadyVerified()
        return Failed(result)

    return Failed(str(VerificationTimeoutError(limit)))


def verify_contract(project_dir, artifact_path, chain_id: int, contract_address: str,
                    contract_name: str, constructor_args: Optional[str], verify: VerifyArgs,
                    config: VerificationConfig = DEFAULT_VERIFICATION,
                    session=None) -> VerificationOutcome:
    """Verify a deployed contract. Skipped without an API key; never raises for explorer trouble."""
    api_key = verify.api_key
    if api_key is None:
        logger.info("no Etherscan API key provided, skipping verification")
        return Skipped()

    logger.info("verifying %s on chain %s...", contract_address, chain_id)
    try:
        standard_json, compiler_version = build_standard_json_input(project_dir, artifact_path)
    except PublishError as e:
        logger.error("failed to build standard JSON input for verification: %s", e)
        return Failed(f"failed to build standard JSON input: {e}")

    args_hex = (constructor_args or "").lower()
    if args_hex.startswith("0x"):
        args_hex = args_hex[2:]

    req = VerificationRequest(
        standard_json_input=standard_json,
        compiler_version=compiler_version,
        chain_id=chain_id,
        contract_address=contract_address,
        contract_name=contract_name,
        constructor_args=args_hex,
    )

    own_session = session is None
    session = session or requests.Session()
    try:
        guid = submit_verification(session, req, api_key, verify.base_url, config)
        if isinstance(guid, Failed):
            return guid
        logger.info("submitted (guid: %s), polling for result...", guid)
        outcome = poll_status(session, guid, chain_id, api_key, verify.base_url, config)
    finally:
        if own_session:
            session.close()

    link = f"{explorer_url(chain_id)}/address/{contract_address}#code"
    if isinstance(outcome, Verified):
        logger.info("verified: %s", link)
    elif isinstance(outcome, AlreadyVerified):
        logger.info("already verified: %s", link)
    elif isinstance(outcome, Failed):
        logger.warning("verification failed: %s", outcome.reason)
    return outcome
