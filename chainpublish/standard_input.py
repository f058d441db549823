# standard_input.py
# Rebuild the Solidity standard JSON input for an artifact so a block explorer
# can recompile it: sources from the project tree, settings from the metadata.

import json
from pathlib import Path

from chainpublish.artifact import read_artifact
from chainpublish.errors import SourceFileMissingError

OUTPUT_SELECTION = {"*": {"*": ["abi", "evm.bytecode", "evm.deployedBytecode"]}}

# explorers reject the metadata-only key
DROPPED_SETTINGS = ("compilationTarget",)


def normalize_compiler_version(version: str) -> str:
    # Etherscan expects "v0.8.28+commit.7893614a"
    return version if version.startswith("v") else f"v{version}"


def build_standard_json_input(project_dir, artifact_path) -> tuple[str, str]:
    """Return (standard JSON input document, compiler version) for `artifact_path`."""
    meta = read_artifact(artifact_path).compiler_metadata

    settings = {k: v for k, v in meta.settings.items() if k not in DROPPED_SETTINGS}
    settings["outputSelection"] = OUTPUT_SELECTION

    sources = {}
    for rel_path in meta.sources:
        full_path = Path(project_dir) / rel_path
        try:
            content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceFileMissingError(f"failed to read source: {full_path}: {e}") from e
        sources[rel_path] = {"content": content}

    doc = {"language": meta.language, "sources": sources, "settings": settings}
    return json.dumps(doc, separators=(",", ":")), normalize_compiler_version(meta.version)
