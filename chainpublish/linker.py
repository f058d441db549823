# linker.py
# Resolve unlinked Solidity libraries: deploy each library artifact referenced
# in bytecode.linkReferences (recursively, libraries may link libraries) and
# patch its address into every __$<hash>$__ placeholder before decoding.

from __future__ import annotations

import binascii
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from web3 import Web3

from chainpublish.artifact import Artifact, library_artifact_path, read_artifact
from chainpublish.config import get_logger
from chainpublish.errors import (
    InvalidBytecodeError,
    LibraryCycleError,
    MissingLibraryArtifactError,
)

if TYPE_CHECKING:
    from chainpublish.chain import DeployOutput

logger = get_logger(__name__)

PLACEHOLDER_PREFIX = "__$"
PLACEHOLDER_SUFFIX = "$__"
PLACEHOLDER_HASH_CHARS = 34


def library_placeholder(fully_qualified_name: str) -> str:
    """Placeholder solc leaves for `fully_qualified_name`, e.g. "src/Verifier.sol:ZKTranscriptLib"."""
    digest = bytes(Web3.keccak(text=fully_qualified_name)).hex()
    return f"{PLACEHOLDER_PREFIX}{digest[:PLACEHOLDER_HASH_CHARS]}{PLACEHOLDER_SUFFIX}"


def address_hex(address: str) -> str:
    h = address.lower()
    if h.startswith("0x"):
        h = h[2:]
    return h


def decode_bytecode(bytecode_hex: str, origin="bytecode") -> bytes:
    raw = bytecode_hex[2:] if bytecode_hex.startswith("0x") else bytecode_hex
    if PLACEHOLDER_PREFIX in raw:
        raise InvalidBytecodeError(f"unresolved library placeholder left in {origin}")
    try:
        return binascii.unhexlify(raw)
    except (binascii.Error, ValueError) as e:
        raise InvalidBytecodeError(f"invalid hex in bytecode.object of {origin}: {e}") from e


@dataclass
class _Frame:
    artifact: Artifact
    name: Optional[str] = None   # fully-qualified library name; None for the root
    pending: list = field(default_factory=list)


def _pending_references(artifact: Artifact):
    out = []
    for source_file, lib_name in artifact.library_references():
        lib_path = library_artifact_path(artifact.output_dir, source_file, lib_name)
        out.append((f"{source_file}:{lib_name}", lib_name, lib_path))
    return out


def link_bytecode(
    artifact_path,
    deploy: Callable[[bytes], "DeployOutput"],
    constructor_args: Optional[bytes] = None,
) -> bytes:
    """
    Return the artifact's creation code with every library linked.

    Libraries are resolved with an explicit stack: a frame is finished (linked,
    decoded, deployed) only once all of its own references are deployed, so the
    deployment order is dependency order. `deploy` is called once per library.
    """
    root = read_artifact(Path(artifact_path))
    deployed: dict[str, str] = {}            # fq name -> address
    in_progress: list[str] = []
    stack = [_Frame(root, None, _pending_references(root))]

    while stack:
        frame = stack[-1]

        if frame.pending:
            fq_name, lib_name, lib_path = frame.pending.pop(0)
            if fq_name in deployed:
                continue
            if fq_name in in_progress:
                raise LibraryCycleError(in_progress[in_progress.index(fq_name):] + [fq_name])
            if not lib_path.is_file():
                raise MissingLibraryArtifactError(fq_name, lib_path)
            lib_artifact = read_artifact(lib_path)
            in_progress.append(fq_name)
            stack.append(_Frame(lib_artifact, fq_name, _pending_references(lib_artifact)))
            continue

        stack.pop()
        bytecode_hex = frame.artifact.bytecode_hex
        for source_file, lib_name in frame.artifact.library_references():
            fq_name = f"{source_file}:{lib_name}"
            bytecode_hex = bytecode_hex.replace(
                library_placeholder(fq_name), address_hex(deployed[fq_name])
            )
        code = decode_bytecode(bytecode_hex, origin=str(frame.artifact.path))

        if frame.name is None:
            break

        lib_name = frame.name.rsplit(":", 1)[-1]
        logger.info("deploying library %s...", lib_name)
        out = deploy(code)
        logger.info("%s deployed to %s", lib_name, out.deployed_address)
        deployed[frame.name] = out.deployed_address
        in_progress.remove(frame.name)

    if constructor_args:
        code += bytes(constructor_args)
    return code
