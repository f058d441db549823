"""
artifact.py: forge build artifacts (bytecode, link references, compiler metadata)
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from chainpublish.config import FORGE_OUT_DIR
from chainpublish.errors import ArtifactReadError, MetadataMissingError


@dataclass(frozen=True)
class CompilerMetadata:
    version: str
    settings: dict
    sources: dict
    language: str = "Solidity"

    @classmethod
    def from_document(cls, doc: dict, origin="artifact") -> "CompilerMetadata":
        compiler = doc.get("compiler") or {}
        if not isinstance(compiler, dict):
            raise MetadataMissingError(f"compiler is not an object in metadata of {origin}")
        version = compiler.get("version")
        if not version or not isinstance(version, str):
            raise MetadataMissingError(f"no compiler.version in metadata of {origin}")
        sources = doc.get("sources")
        if not isinstance(sources, dict):
            raise MetadataMissingError(f"no sources in metadata of {origin}")
        settings = doc.get("settings") or {}
        if not isinstance(settings, dict):
            raise MetadataMissingError(f"settings is not an object in metadata of {origin}")
        return cls(
            version=version,
            settings=settings,
            sources=sources,
            language=doc.get("language") or "Solidity",
        )


@dataclass
class Artifact:
    path: Path
    bytecode_hex: str
    link_references: dict = field(default_factory=dict)
    metadata: Optional[dict] = None

    @property
    def output_dir(self) -> Path:
        # <out>/<File.sol>/<Contract>.json -> <out>
        return self.path.parent.parent

    @property
    def compiler_metadata(self) -> CompilerMetadata:
        if self.metadata is None:
            raise MetadataMissingError(f"no metadata found in artifact {self.path}")
        return CompilerMetadata.from_document(self.metadata, origin=str(self.path))

    def library_references(self) -> Iterator[tuple[str, str]]:
        for source_file, libs in self.link_references.items():
            if not isinstance(libs, dict):
                continue
            for lib_name in libs:
                yield source_file, lib_name


def _parse_metadata(doc: dict, path: Path) -> Optional[dict]:
    # forge keeps the metadata as a JSON string in "rawMetadata"
    if "rawMetadata" in doc:
        raw = doc["rawMetadata"]
        if not isinstance(raw, str):
            raise ArtifactReadError(f"rawMetadata is not a string in {path}")
        return _loads_metadata(raw, path)
    meta = doc.get("metadata")
    if meta is None:
        return None
    if isinstance(meta, str):
        return _loads_metadata(meta, path)
    if isinstance(meta, dict):
        return meta
    raise ArtifactReadError(f"unsupported metadata type in {path}: {type(meta).__name__}")


def _loads_metadata(text: str, path: Path) -> dict:
    try:
        meta = json.loads(text)
    except json.JSONDecodeError as e:
        raise ArtifactReadError(f"invalid metadata JSON in {path}: {e}") from e
    if not isinstance(meta, dict):
        raise ArtifactReadError(f"metadata in {path} is not an object")
    return meta


def read_artifact(path) -> Artifact:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ArtifactReadError(f"artifact not found: {path}") from e
    except OSError as e:
        raise ArtifactReadError(f"failed to read artifact {path}: {e}") from e

    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ArtifactReadError(f"failed to parse artifact JSON {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ArtifactReadError(f"artifact {path} is not a JSON object")

    bytecode: Any = doc.get("bytecode")
    obj = bytecode.get("object") if isinstance(bytecode, dict) else None
    if not isinstance(obj, str):
        raise ArtifactReadError(f"missing bytecode.object in artifact: {path}")

    link_refs = bytecode.get("linkReferences") or {}
    if not isinstance(link_refs, dict):
        raise ArtifactReadError(f"bytecode.linkReferences is not an object in {path}")

    return Artifact(
        path=path,
        bytecode_hex=obj,
        link_references=link_refs,
        metadata=_parse_metadata(doc, path),
    )


def artifact_path(project_dir, sol_file: str, contract_name: str) -> Path:
    return Path(project_dir) / FORGE_OUT_DIR / sol_file / f"{contract_name}.json"


def library_artifact_path(output_dir, source_file: str, library_name: str) -> Path:
    # linkReferences key by source path ("src/Lib.sol"), forge stores by filename
    return Path(output_dir) / Path(source_file).name / f"{library_name}.json"
