"""Tests for the chainpublish command line (chain, explorer and toolchain patched out)."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
from web3 import Web3

from chainpublish.chain import ChainClient, DeployOutput
from chainpublish.cli import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_USAGE,
    CircuitBuild,
    build_circuit,
    build_parser,
    deploy_honk_verifier,
    main,
)
from chainpublish.errors import DeploymentFailedError
from chainpublish.explorer import Verified, VerifyArgs
from chainpublish.ipfs import IpfsAddResult

KEY = "0x" + "01" * 32
REGULATOR = "0x" + "ab" * 20


def chain_flags() -> list:
    return ["--rpc-url", "http://127.0.0.1:8545", "--private-key", KEY]


@pytest.fixture
def noir_project(tmp_path: Path) -> Path:
    project = tmp_path / "age_check"
    (project / "src").mkdir(parents=True)
    (project / "Nargo.toml").write_text('[package]\nname = "age_check"\ntype = "bin"\n', encoding="utf-8")
    (project / "src" / "main.nr").write_text("fn main() {}\n", encoding="utf-8")
    return project


def test_help_lists_commands(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--help"])

    assert exc_info.value.code == 0
    out = capsys.readouterr().out
    for command in ("init", "deploy", "new-compliance-definition", "publish"):
        assert command in out


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["publish", "circuit", "--compliance-definition", REGULATOR])

    assert args.params_root == "0x" + "00" * 32
    assert args.t_start == "0"
    assert int(args.t_end) == 2**256 - 1
    assert args.contract_dir == "verifier-base-contract"


class TestInit:
    def test_scaffolds_project(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)

        assert main(["init", "my_circuit"]) == EXIT_OK

        nargo = (tmp_path / "my_circuit" / "Nargo.toml").read_text(encoding="utf-8")
        assert 'name = "my_circuit"' in nargo
        assert (tmp_path / "my_circuit" / "src" / "main.nr").is_file()

    def test_existing_directory_is_usage_error(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "my_circuit").mkdir()

        with pytest.raises(SystemExit) as exc_info:
            main(["init", "my_circuit"])

        assert exc_info.value.code == EXIT_USAGE


class TestDeploy:
    def test_deploys_and_writes_receipt(self, tmp_path: Path, write_artifact, chain, capsys) -> None:
        artifact = write_artifact("Counter.sol", "Counter", "0x6080")
        receipts = tmp_path / "receipts"

        with patch("chainpublish.cli.ChainClient.connect", return_value=chain):
            code = main([
                "--etherscan-api-key", "", "--receipts-dir", str(receipts),
                "deploy", str(artifact), "--contract-name", "src/Counter.sol:Counter",
                "--constructor-args", "0x0102", *chain_flags(),
            ])

        assert code == EXIT_OK
        assert chain.deployed == [b"\x60\x80\x01\x02"]
        out = capsys.readouterr().out
        assert "address=0x" + "11" * 20 in out
        assert "verification=skipped" in out
        [receipt] = receipts.glob("deploy-*.json")
        doc = json.loads(receipt.read_text(encoding="utf-8"))
        assert doc["data"]["contract_name"] == "src/Counter.sol:Counter"
        assert doc["data"]["verification"] == "skipped"

    def test_missing_chain_settings(self, write_artifact) -> None:
        artifact = write_artifact("Counter.sol", "Counter", "0x6080")

        with pytest.raises(SystemExit) as exc_info:
            main(["deploy", str(artifact), "--contract-name", "C", "--rpc-url", "", "--private-key", ""])

        assert exc_info.value.code == EXIT_USAGE

    def test_bad_constructor_hex(self, write_artifact) -> None:
        artifact = write_artifact("Counter.sol", "Counter", "0x6080")

        with pytest.raises(SystemExit) as exc_info:
            main(["deploy", str(artifact), "--contract-name", "C", "--constructor-args", "0xzz", *chain_flags()])

        assert exc_info.value.code == EXIT_USAGE

    def test_missing_artifact_is_runtime_error(self, tmp_path: Path, chain, capsys) -> None:
        artifact = tmp_path / "out" / "Gone.sol" / "Gone.json"

        with patch("chainpublish.cli.ChainClient.connect", return_value=chain):
            with pytest.raises(SystemExit) as exc_info:
                main(["deploy", str(artifact), "--contract-name", "src/Gone.sol:Gone", *chain_flags()])

        assert exc_info.value.code == EXIT_ERROR
        assert "artifact not found" in capsys.readouterr().err


class TestArgumentChecks:
    def test_invalid_regulator(self, noir_project: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["new-compliance-definition", str(noir_project), "--regulator", "0x1234", *chain_flags()])

        assert exc_info.value.code == EXIT_USAGE

    def test_invalid_params_root(self, noir_project: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["publish", str(noir_project), "--compliance-definition", REGULATOR,
                  "--params-root", "0x12", *chain_flags()])

        assert exc_info.value.code == EXIT_USAGE

    def test_t_end_out_of_range(self, noir_project: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["publish", str(noir_project), "--compliance-definition", REGULATOR,
                  "--t-end", str(2**256), *chain_flags()])

        assert exc_info.value.code == EXIT_USAGE

    def test_not_a_noir_project(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["publish", str(tmp_path), "--compliance-definition", REGULATOR, *chain_flags()])

        assert exc_info.value.code == EXIT_USAGE


def test_publish_registers_verifier(tmp_path: Path, noir_project: Path, capsys) -> None:
    target = noir_project / "target"
    build = CircuitBuild(
        source_file=noir_project / "src" / "main.nr",
        bytecode_path=target / "age_check.json",
        vk_path=target / "vk",
        verifier_path=target / "Verifier.sol",
    )
    verifier = DeployOutput(deployed_address="0x" + "22" * 20, transaction_hash="0x" + "dd" * 32)
    client = MagicMock(chain_id=11155111)
    client.update_constraint.return_value = "0x" + "ee" * 32
    receipts = tmp_path / "receipts"

    with patch("chainpublish.cli.build_circuit", return_value=build), \
            patch("chainpublish.cli.add_file", return_value=IpfsAddResult("main.nr", "QmCid", "13")) as add, \
            patch("chainpublish.cli.deploy_honk_verifier", return_value=(verifier, Verified())), \
            patch("chainpublish.cli.ChainClient.connect", return_value=client):
        code = main([
            "--receipts-dir", str(receipts), "--ipfs-rpc-url", "http://ipfs:5001",
            "publish", str(noir_project), "--compliance-definition", REGULATOR,
            "--t-start", "100", *chain_flags(),
        ])

    assert code == EXIT_OK
    add.assert_called_once_with("http://ipfs:5001", build.source_file)
    args = client.update_constraint.call_args.args
    assert args[1:] == ("0x" + "22" * 20, "0x" + "00" * 32, 100, 2**256 - 1, "QmCid")
    out = capsys.readouterr().out
    assert "cid=QmCid" in out
    assert "verification=verified" in out
    [receipt] = receipts.glob("publish-*.json")
    data = json.loads(receipt.read_text(encoding="utf-8"))["data"]
    assert data["update_tx_hash"] == "0x" + "ee" * 32
    assert data["verification_status"] == "verified"


def test_init_io_error_is_runtime_error(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)

    with patch("chainpublish.cli.Path.mkdir", side_effect=PermissionError("read-only file system")):
        with pytest.raises(SystemExit) as exc_info:
            main(["init", "my_circuit"])

    assert exc_info.value.code == EXIT_ERROR
    assert "read-only file system" in capsys.readouterr().err


def test_node_outage_during_deploy_exits_with_error(write_artifact, capsys) -> None:
    artifact = write_artifact("Counter.sol", "Counter", "0x6080")
    w3 = MagicMock()
    w3.eth.chain_id = 11155111
    w3.eth.get_transaction_count.side_effect = requests.ConnectionError("node down")
    client = ChainClient(w3, MagicMock(address="0x" + "99" * 20))

    with patch("chainpublish.cli.ChainClient.connect", return_value=client):
        with pytest.raises(SystemExit) as exc_info:
            main(["deploy", str(artifact), "--contract-name", "src/Counter.sol:Counter", *chain_flags()])

    assert exc_info.value.code == EXIT_ERROR
    assert "node down" in capsys.readouterr().err


class TestBuildCircuit:
    def test_runs_toolchain_in_order(self, noir_project: Path) -> None:
        calls = []
        target = noir_project / "target"

        def record(name, value=None):
            def _step(*args):
                calls.append((name, args))
                return value
            return _step

        with patch("chainpublish.cli.find_source_file", side_effect=record("source", noir_project / "src" / "main.nr")), \
                patch("chainpublish.cli.nargo_check", side_effect=record("check")), \
                patch("chainpublish.cli.nargo_compile", side_effect=record("compile", target / "age_check.json")), \
                patch("chainpublish.cli.write_vk", side_effect=record("vk", target / "vk")), \
                patch("chainpublish.cli.write_solidity_verifier", side_effect=record("verifier")):
            build = build_circuit(noir_project, None)

        assert [name for name, _ in calls] == ["source", "check", "compile", "vk", "verifier"]
        assert dict(calls)["vk"] == (target / "age_check.json", target)
        assert dict(calls)["verifier"] == (target / "vk", target / "Verifier.sol")
        assert build == CircuitBuild(noir_project / "src" / "main.nr", target / "age_check.json",
                                     target / "vk", target / "Verifier.sol")

    def test_verifier_output_override(self, noir_project: Path, tmp_path: Path) -> None:
        target = noir_project / "target"
        custom = tmp_path / "HonkVerifier.sol"

        with patch("chainpublish.cli.find_source_file"), patch("chainpublish.cli.nargo_check"), \
                patch("chainpublish.cli.nargo_compile", return_value=target / "age_check.json"), \
                patch("chainpublish.cli.write_vk", return_value=target / "vk"), \
                patch("chainpublish.cli.write_solidity_verifier") as write_verifier:
            build = build_circuit(noir_project, custom)

        write_verifier.assert_called_once_with(target / "vk", custom)
        assert build.verifier_path == custom


@pytest.fixture
def contract_dir(tmp_path: Path) -> Path:
    path = tmp_path / "verifier-base-contract"
    (path / "src").mkdir(parents=True)
    return path


@pytest.fixture
def generated_verifier(tmp_path: Path) -> Path:
    path = tmp_path / "Verifier.sol"
    path.write_text("contract HonkVerifier {}", encoding="utf-8")
    return path


class TestDeployHonkVerifier:
    def test_copy_present_during_build_and_removed_after(self, contract_dir: Path, generated_verifier: Path) -> None:
        copied = contract_dir / "src" / "Verifier.sol"
        seen = []
        out = DeployOutput(deployed_address="0x" + "22" * 20, transaction_hash="0x" + "dd" * 32)

        with patch("chainpublish.cli.forge_build", side_effect=lambda d: seen.append(copied.read_text())), \
                patch("chainpublish.cli.deploy_from_artifact", return_value=out) as deploy, \
                patch("chainpublish.cli.verify_contract", return_value=Verified()) as verify:
            result = deploy_honk_verifier(MagicMock(chain_id=1), contract_dir, generated_verifier, VerifyArgs())

        assert result == (out, Verified())
        assert seen == ["contract HonkVerifier {}"]
        assert not copied.exists()
        assert deploy.call_args.args[1] == contract_dir / "out" / "Verifier.sol" / "HonkVerifier.json"
        assert verify.call_args.args[4] == "src/Verifier.sol:HonkVerifier"

    def test_copy_removed_when_deploy_fails(self, contract_dir: Path, generated_verifier: Path) -> None:
        with patch("chainpublish.cli.forge_build"), \
                patch("chainpublish.cli.deploy_from_artifact", side_effect=DeploymentFailedError("reverted")), \
                patch("chainpublish.cli.verify_contract") as verify:
            with pytest.raises(DeploymentFailedError):
                deploy_honk_verifier(MagicMock(chain_id=1), contract_dir, generated_verifier, VerifyArgs())

        assert not (contract_dir / "src" / "Verifier.sol").exists()
        verify.assert_not_called()


def test_new_compliance_definition_flow(tmp_path: Path, noir_project: Path, contract_dir: Path,
                                        generated_verifier: Path, capsys) -> None:
    events = []
    target = noir_project / "target"
    build = CircuitBuild(noir_project / "src" / "main.nr", target / "age_check.json",
                         target / "vk", generated_verifier)
    definition = DeployOutput(deployed_address="0x" + "11" * 20, transaction_hash="0x" + "aa" * 32)
    verifier = DeployOutput(deployed_address="0x" + "22" * 20, transaction_hash="0x" + "bb" * 32)
    ctor = b"\x00" * 12 + bytes.fromhex("ab" * 20)

    def fake_build(d):
        events.append(("forge_build", (d / "src" / "Verifier.sol").exists()))

    def fake_deploy(client, artifact, ctor_args=None):
        events.append(("deploy", artifact.name, ctor_args))
        return definition if artifact.name == "ComplianceDefinition.json" else verifier

    def fake_verify(project_dir, artifact, chain_id, address, name, ctor_hex, verify):
        events.append(("verify", name, ctor_hex))
        return Verified()

    def fake_update(*args):
        events.append(("update",) + args)
        return "0x" + "ee" * 32

    client = MagicMock(chain_id=11155111)
    client.update_constraint.side_effect = fake_update
    receipts = tmp_path / "receipts"

    with patch("chainpublish.cli.ChainClient.connect", return_value=client), \
            patch("chainpublish.cli.encode_address_argument", return_value=ctor), \
            patch("chainpublish.cli.forge_build", side_effect=fake_build), \
            patch("chainpublish.cli.deploy_from_artifact", side_effect=fake_deploy), \
            patch("chainpublish.cli.verify_contract", side_effect=fake_verify), \
            patch("chainpublish.cli.build_circuit", side_effect=lambda *a: events.append(("circuit",)) or build), \
            patch("chainpublish.cli.add_file",
                  side_effect=lambda *a: events.append(("ipfs",)) or IpfsAddResult("main.nr", "QmCid", "13")):
        code = main([
            "--receipts-dir", str(receipts), "new-compliance-definition", str(noir_project),
            "--regulator", REGULATOR, "--contract-dir", str(contract_dir), *chain_flags(),
        ])

    assert code == EXIT_OK
    assert events == [
        ("forge_build", False),
        ("deploy", "ComplianceDefinition.json", ctor),
        ("verify", "src/ComplianceDefinition.sol:ComplianceDefinition", ctor.hex()),
        ("circuit",),
        ("ipfs",),
        ("forge_build", True),
        ("deploy", "HonkVerifier.json", None),
        ("verify", "src/Verifier.sol:HonkVerifier", None),
        ("update", "0x" + "11" * 20, "0x" + "22" * 20, "0x" + "00" * 32, 0, 2**256 - 1, "QmCid"),
    ]
    assert not (contract_dir / "src" / "Verifier.sol").exists()

    out = capsys.readouterr().out
    assert "compliance_definition=0x" + "11" * 20 in out
    assert "verifier_address=0x" + "22" * 20 in out
    [receipt] = receipts.glob("new-compliance-definition-*.json")
    data = json.loads(receipt.read_text(encoding="utf-8"))["data"]
    assert data["regulator"] == Web3.to_checksum_address(REGULATOR)
    assert data["compliance_definition_verification"] == "verified"
    assert data["verifier_tx"] == "0x" + "bb" * 32
    assert data["update_tx"] == "0x" + "ee" * 32
    assert data["cid"] == "QmCid"
