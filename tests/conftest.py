"""Shared fixtures: forge-style artifact trees and a recording chain stand-in."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from chainpublish.chain import DeployOutput
from chainpublish.config import VerificationConfig

ZERO_DELAY = VerificationConfig(poll_interval=0, submit_retry_delay=0, request_timeout=1)


class RecordingChain:
    """Stands in for ChainClient: records deployed code, hands out fixed addresses."""

    chain_id = 11155111

    def __init__(self) -> None:
        self.deployed: list[bytes] = []

    def deploy(self, bytecode: bytes) -> DeployOutput:
        self.deployed.append(bytecode)
        n = len(self.deployed)
        return DeployOutput(
            deployed_address="0x" + f"{n}{n}" * 20,
            transaction_hash="0x" + f"{n}" * 64,
        )


@pytest.fixture
def chain() -> RecordingChain:
    return RecordingChain()


@pytest.fixture
def zero_delay() -> VerificationConfig:
    return ZERO_DELAY


@pytest.fixture
def write_artifact(tmp_path: Path):
    """Write out/<File.sol>/<Name>.json under tmp_path and return its path."""

    def _write(
        sol_file: str,
        name: str,
        bytecode: str,
        link_references: dict | None = None,
        **extra: Any,
    ) -> Path:
        path = tmp_path / "out" / Path(sol_file).name / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        doc = {"bytecode": {"object": bytecode, "linkReferences": link_references or {}}}
        doc.update(extra)
        path.write_text(json.dumps(doc), encoding="utf-8")
        return path

    return _write
