"""
cli.py: chainpublish command line

Commands:
  init NAME                         scaffold a Noir compliance circuit project
  deploy ARTIFACT --contract-name   link + deploy + verify one forge artifact
  new-compliance-definition DIR     deploy ComplianceDefinition, then compile,
                                    publish and register the circuit verifier
  publish DIR                       compile, publish and register a verifier on an
                                    existing ComplianceDefinition

Run:
  pip install -e .
  export RPC_URL=... PRIVATE_KEY=... [ETHERSCAN_API_KEY=...]
  chainpublish new-compliance-definition ./my_circuit --regulator 0x...

Progress goes to stderr, results (key=value) to stdout, a JSON receipt to --receipts-dir.
"""
from __future__ import annotations

import argparse
import re
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from web3 import Web3

from chainpublish import config
from chainpublish.artifact import artifact_path
from chainpublish.chain import ChainClient, DeployOutput, deploy_from_artifact, encode_address_argument
from chainpublish.errors import PublishError
from chainpublish.explorer import VerificationOutcome, VerifyArgs, network_name, verify_contract
from chainpublish.ipfs import add_file
from chainpublish.receipt import write_receipt
from chainpublish.toolchain import (
    find_source_file,
    forge_build,
    nargo_check,
    nargo_compile,
    write_solidity_verifier,
    write_vk,
)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2

UINT256_MAX = str(2**256 - 1)
BYTES32_ZERO = "0x" + "00" * 32
DEFAULT_CONTRACT_DIR = "verifier-base-contract"

COMPLIANCE_DEFINITION = ("ComplianceDefinition.sol", "ComplianceDefinition")
HONK_VERIFIER = ("Verifier.sol", "HonkVerifier")

NARGO_TOML_TEMPLATE = """[package]
name = "{name}"
type = "bin"
authors = [""]

[dependencies]
"""

MAIN_NR_TEMPLATE = """fn main(x: u64, y: pub u64) {
    assert(x != y);
}

#[test]
fn test_main() {
    main(1, 2);
}
"""


class UsageError(Exception):
    pass


# Pretty helpers (stderr only; stdout is reserved for results)
def section(title: str): print(f"\n{title}", file=sys.stderr)
def info(msg: str): print(f"  {msg}", file=sys.stderr)
def result(key: str, value): print(f"{key}={value}")


def die(msg: str, code: int = EXIT_ERROR):
    print(f"error: {msg}", file=sys.stderr)
    sys.exit(code)


# ---- receipts ---------------------------------------------------------------

@dataclass
class DeployData:
    artifact: str
    contract_name: str
    address: str
    transaction_hash: str
    chain_id: int
    verification: str


@dataclass
class NewComplianceDefinitionData:
    compliance_definition_address: str
    compliance_definition_tx: str
    compliance_definition_verification: str
    regulator: str
    chain_id: int
    rpc_url: str
    source_file: str
    cid: str
    verifier_address: str
    verifier_tx: str
    verifier_verification: str
    update_tx: str


@dataclass
class PublishData:
    project_dir: str
    bytecode_path: str
    vk_path: str
    verifier_path: str
    cid: str
    file_name: str
    ipfs_size: str
    verifier_address: str
    deploy_tx_hash: str
    compliance_definition: str
    update_tx_hash: str
    verification_status: str


# ---- argument checks --------------------------------------------------------

def _require(value: Optional[str], flag: str, env: str) -> str:
    if not value:
        raise UsageError(f"{flag} is required (or set {env})")
    return value


def _address(value: str, what: str) -> str:
    if not Web3.is_address(value):
        raise UsageError(f"invalid {what} address: {value}")
    return Web3.to_checksum_address(value)


def _bytes32(value: str) -> str:
    if not re.fullmatch(r"0x[0-9a-fA-F]{64}", value or ""):
        raise UsageError(f"invalid params_root (expected bytes32): {value}")
    return value


def _uint256(value: str, what: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise UsageError(f"invalid {what} (expected uint256): {value}") from None
    if not 0 <= n < 2**256:
        raise UsageError(f"invalid {what} (expected uint256): {value}")
    return n


def _noir_project(path: Path) -> Path:
    if not path.is_dir():
        raise UsageError(f"not a directory: {path}")
    if not (path / "Nargo.toml").exists():
        raise UsageError(f"no Nargo.toml found in {path} -- is this a Noir project?")
    return path


def _client(args) -> ChainClient:
    rpc_url = _require(args.rpc_url, "--rpc-url", "RPC_URL")
    private_key = _require(args.private_key, "--private-key", "PRIVATE_KEY")
    return ChainClient.connect(rpc_url, private_key)


def _verify_args(args) -> VerifyArgs:
    return VerifyArgs(etherscan_api_key=args.etherscan_api_key, verifier_url=args.verifier_url)


# ---- shared pipeline steps --------------------------------------------------

@dataclass
class CircuitBuild:
    source_file: Path
    bytecode_path: Path
    vk_path: Path
    verifier_path: Path


def build_circuit(project_dir: Path, verifier_output: Optional[Path]) -> CircuitBuild:
    source_file = find_source_file(project_dir)
    info("Validating...")
    nargo_check(project_dir)
    info("Compiling...")
    bytecode_path = nargo_compile(project_dir)
    target_dir = project_dir / "target"
    info("Generating verification key...")
    vk_path = write_vk(bytecode_path, target_dir)
    verifier_path = verifier_output or target_dir / "Verifier.sol"
    info("Generating Solidity verifier...")
    write_solidity_verifier(vk_path, verifier_path)
    return CircuitBuild(source_file, bytecode_path, vk_path, verifier_path)


def deploy_honk_verifier(client: ChainClient, contract_dir: Path, verifier_path: Path,
                         verify: VerifyArgs) -> tuple[DeployOutput, VerificationOutcome]:
    # forge compiles the verifier from inside the contract project; the copy is
    # needed until verification has read the sources back
    deploy_path = contract_dir / "src" / HONK_VERIFIER[0]
    try:
        shutil.copyfile(verifier_path, deploy_path)
    except OSError as e:
        raise PublishError(f"failed to copy {verifier_path} to {deploy_path}: {e}") from e
    try:
        info("Compiling...")
        forge_build(contract_dir)
        artifact = artifact_path(contract_dir, *HONK_VERIFIER)
        info(f"Deploying to {network_name(client.chain_id)}...")
        out = deploy_from_artifact(client, artifact)
        outcome = verify_contract(
            contract_dir, artifact, client.chain_id, out.deployed_address,
            f"src/{HONK_VERIFIER[0]}:{HONK_VERIFIER[1]}", None, verify,
        )
    finally:
        deploy_path.unlink(missing_ok=True)
    return out, outcome


# ---- commands ---------------------------------------------------------------

def cmd_init(args) -> int:
    project_dir = Path(args.name)
    if project_dir.exists():
        raise UsageError(f"directory already exists: {args.name}")
    try:
        (project_dir / "src").mkdir(parents=True)
        (project_dir / "Nargo.toml").write_text(NARGO_TOML_TEMPLATE.format(name=project_dir.name), encoding="utf-8")
        (project_dir / "src" / "main.nr").write_text(MAIN_NR_TEMPLATE, encoding="utf-8")
    except OSError as e:
        raise PublishError(f"failed to create project {args.name}: {e}") from e
    print(f"created compliance definition project: {args.name}/")
    return EXIT_OK


def cmd_deploy(args) -> int:
    artifact = Path(args.artifact)
    project_dir = Path(args.project_dir) if args.project_dir else artifact.resolve().parents[2]
    ctor_hex = args.constructor_args or ""
    if ctor_hex.startswith("0x"):
        ctor_hex = ctor_hex[2:]
    try:
        ctor_args = bytes.fromhex(ctor_hex) if ctor_hex else None
    except ValueError:
        raise UsageError(f"invalid --constructor-args hex: {args.constructor_args}") from None

    client = _client(args)
    section(args.contract_name)
    info(f"Deploying to {network_name(client.chain_id)}...")
    out = deploy_from_artifact(client, artifact, ctor_args)
    outcome = verify_contract(
        project_dir, artifact, client.chain_id, out.deployed_address,
        args.contract_name, ctor_hex or None, _verify_args(args),
    )
    info(f"Address:      {out.deployed_address}")
    info(f"Transaction:  {out.transaction_hash}")
    info(f"Verification: {outcome}")

    result("address", out.deployed_address)
    result("tx_hash", out.transaction_hash)
    result("chain_id", client.chain_id)
    result("verification", outcome)

    write_receipt("deploy", DeployData(
        artifact=str(artifact),
        contract_name=args.contract_name,
        address=out.deployed_address,
        transaction_hash=out.transaction_hash,
        chain_id=client.chain_id,
        verification=str(outcome),
    ), args.receipts_dir)
    return EXIT_OK


def cmd_new_compliance_definition(args) -> int:
    project_dir = _noir_project(Path(args.path))
    contract_dir = Path(args.contract_dir)
    regulator = _address(args.regulator, "regulator")
    params_root = _bytes32(args.params_root)
    t_start = _uint256(args.t_start, "t_start")
    t_end = _uint256(args.t_end, "t_end")
    verify = _verify_args(args)

    client = _client(args)
    chain_id = client.chain_id
    network = network_name(chain_id)

    section("ComplianceDefinition Contract")
    info("Compiling contracts...")
    forge_build(contract_dir)
    cd_artifact = artifact_path(contract_dir, *COMPLIANCE_DEFINITION)
    ctor_args = encode_address_argument(client, regulator)
    info(f"Deploying to {network}...")
    cd = deploy_from_artifact(client, cd_artifact, ctor_args)
    cd_verification = verify_contract(
        contract_dir, cd_artifact, chain_id, cd.deployed_address,
        f"src/{COMPLIANCE_DEFINITION[0]}:{COMPLIANCE_DEFINITION[1]}", ctor_args.hex(), verify,
    )
    info(f"Address:      {cd.deployed_address}")
    info(f"Transaction:  {cd.transaction_hash}")
    info(f"Chain ID:     {chain_id}")
    info(f"Verification: {cd_verification}")

    source_file = find_source_file(project_dir)
    section(f"Noir Circuit ({source_file})")
    circuit = build_circuit(project_dir, Path(args.verifier_output) if args.verifier_output else None)

    section("IPFS Upload")
    info(f"Uploading {circuit.source_file}...")
    uploaded = add_file(args.ipfs_rpc_url, circuit.source_file)
    info(f"CID: {uploaded.hash}")

    section("HonkVerifier Contract")
    verifier, verifier_verification = deploy_honk_verifier(client, contract_dir, circuit.verifier_path, verify)
    info(f"Address:      {verifier.deployed_address}")
    info(f"Transaction:  {verifier.transaction_hash}")
    info(f"Verification: {verifier_verification}")

    section("Compliance Registration")
    info(f"Registering verifier on {cd.deployed_address}...")
    update_tx = client.update_constraint(
        cd.deployed_address, verifier.deployed_address, params_root, t_start, t_end, uploaded.hash,
    )
    info(f"Transaction:  {update_tx}")

    print(file=sys.stderr)
    result("compliance_definition", cd.deployed_address)
    result("verifier_address", verifier.deployed_address)
    result("cid", uploaded.hash)
    result("chain_id", chain_id)

    write_receipt("new-compliance-definition", NewComplianceDefinitionData(
        compliance_definition_address=cd.deployed_address,
        compliance_definition_tx=cd.transaction_hash,
        compliance_definition_verification=str(cd_verification),
        regulator=regulator,
        chain_id=chain_id,
        rpc_url=args.rpc_url,
        source_file=str(circuit.source_file),
        cid=uploaded.hash,
        verifier_address=verifier.deployed_address,
        verifier_tx=verifier.transaction_hash,
        verifier_verification=str(verifier_verification),
        update_tx=update_tx,
    ), args.receipts_dir)
    return EXIT_OK


def cmd_publish(args) -> int:
    project_dir = _noir_project(Path(args.path))
    contract_dir = Path(args.contract_dir)
    definition = _address(args.compliance_definition, "compliance definition")
    params_root = _bytes32(args.params_root)
    t_start = _uint256(args.t_start, "t_start")
    t_end = _uint256(args.t_end, "t_end")

    section(f"Noir Circuit ({project_dir})")
    circuit = build_circuit(project_dir, Path(args.verifier_output) if args.verifier_output else None)

    section("IPFS Upload")
    uploaded = add_file(args.ipfs_rpc_url, circuit.source_file)
    info(f"CID: {uploaded.hash}")

    client = _client(args)
    section("HonkVerifier Contract")
    verifier, verification = deploy_honk_verifier(client, contract_dir, circuit.verifier_path, _verify_args(args))
    info(f"Address:      {verifier.deployed_address}")

    section("Compliance Registration")
    update_tx = client.update_constraint(
        definition, verifier.deployed_address, params_root, t_start, t_end, uploaded.hash,
    )
    info(f"Transaction:  {update_tx}")

    result("verifier_address", verifier.deployed_address)
    result("deploy_tx_hash", verifier.transaction_hash)
    result("update_tx_hash", update_tx)
    result("cid", uploaded.hash)
    result("chain_id", client.chain_id)
    result("verification", verification)

    write_receipt("publish", PublishData(
        project_dir=str(project_dir),
        bytecode_path=str(circuit.bytecode_path),
        vk_path=str(circuit.vk_path),
        verifier_path=str(circuit.verifier_path),
        cid=uploaded.hash,
        file_name=uploaded.name,
        ipfs_size=uploaded.size,
        verifier_address=verifier.deployed_address,
        deploy_tx_hash=verifier.transaction_hash,
        compliance_definition=definition,
        update_tx_hash=update_tx,
        verification_status=str(verification),
    ), args.receipts_dir)
    return EXIT_OK


# ---- parser -----------------------------------------------------------------

def _chain_options(p):
    p.add_argument("--rpc-url", default=config.RPC_URL, help="RPC URL of the target chain (env RPC_URL)")
    p.add_argument("--private-key", default=config.PRIVATE_KEY, help="deployer private key (env PRIVATE_KEY)")


def _circuit_options(p):
    p.add_argument("path", metavar="DIR", help="Noir project directory (containing Nargo.toml)")
    p.add_argument("--contract-dir", default=DEFAULT_CONTRACT_DIR,
                   help="Foundry project used to deploy the contracts")
    p.add_argument("--verifier-output", metavar="FILE",
                   help="where to write the generated Solidity verifier [default: DIR/target/Verifier.sol]")
    p.add_argument("--params-root", default=BYTES32_ZERO, help="Merkle root of public parameters (bytes32)")
    p.add_argument("--t-start", default="0", help="block height when this version becomes active")
    p.add_argument("--t-end", default=UINT256_MAX, help="block height when this version expires")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chainpublish",
        description="Deploy, verify and register privacy-preserving compliance definitions",
    )
    ap.add_argument("--ipfs-rpc-url", default=config.IPFS_RPC_URL, help="IPFS RPC endpoint URL")
    ap.add_argument("--receipts-dir", default=config.RECEIPTS_DIR, help="directory for JSON receipts")
    ap.add_argument("--etherscan-api-key", default=config.ETHERSCAN_API_KEY,
                    help="block explorer API key; when set, deployed contracts are verified")
    ap.add_argument("--verifier-url", default=config.VERIFIER_URL,
                    help="explorer verification API URL (for non-Etherscan explorers)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="initialize a new Noir compliance definition project")
    p.add_argument("name")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("deploy", help="deploy (and verify) a contract from a forge artifact")
    p.add_argument("artifact", help="forge artifact, e.g. out/Counter.sol/Counter.json")
    p.add_argument("--contract-name", required=True, help="fully-qualified name, e.g. src/Counter.sol:Counter")
    p.add_argument("--project-dir", help="forge project root [default: three levels above the artifact]")
    p.add_argument("--constructor-args", help="ABI-encoded constructor arguments (hex)")
    _chain_options(p)
    p.set_defaults(func=cmd_deploy)

    p = sub.add_parser("new-compliance-definition",
                       help="deploy a ComplianceDefinition and register a circuit verifier with it")
    _circuit_options(p)
    p.add_argument("--regulator", required=True, help="address controlling the compliance definition")
    _chain_options(p)
    p.set_defaults(func=cmd_new_compliance_definition)

    p = sub.add_parser("publish", help="compile, deploy and register a circuit verifier")
    _circuit_options(p)
    p.add_argument("--compliance-definition", required=True, help="deployed ComplianceDefinition address")
    _chain_options(p)
    p.set_defaults(func=cmd_publish)

    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(verbose=args.verbose)
    try:
        return args.func(args)
    except UsageError as e:
        die(str(e), EXIT_USAGE)
    except PublishError as e:
        die(str(e), EXIT_ERROR)


if __name__ == "__main__":
    sys.exit(main())
