# toolchain.py
# Thin wrappers around the external CLIs: forge (Solidity build), nargo (Noir
# circuit check/compile) and bb (barretenberg verification key + Solidity verifier).

import subprocess
import tomllib
from pathlib import Path

from chainpublish.config import get_logger
from chainpublish.errors import ToolchainError

logger = get_logger(__name__)


def _run(cmd, what: str, hint: str, cwd=None):
    logger.debug("running: %s", " ".join(str(c) for c in cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
    except OSError as e:
        raise ToolchainError(f"failed to run {what} -- is {hint} installed? ({e})") from e
    if result.returncode != 0:
        raise ToolchainError(f"{what} failed:\n{result.stderr}")
    return result


# ---- forge ------------------------------------------------------------------

def forge_build(project_dir):
    project_dir = Path(project_dir)
    _run(
        ["forge", "build", "--root", str(project_dir), "--optimize", "--optimizer-runs", "1"],
        f"`forge build` for {project_dir}",
        "foundry",
    )


# ---- nargo ------------------------------------------------------------------

def read_nargo_toml(project_dir) -> dict:
    toml_path = Path(project_dir) / "Nargo.toml"
    try:
        with open(toml_path, "rb") as f:
            config = tomllib.load(f)
    except OSError as e:
        raise ToolchainError(f"failed to read {toml_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ToolchainError(f"failed to parse {toml_path}: {e}") from e
    if "name" not in config.get("package", {}):
        raise ToolchainError(f"no [package] name in {toml_path}")
    return config


def find_source_file(project_dir) -> Path:
    """Main source of a Nargo project: src/lib.nr for libraries, src/main.nr otherwise."""
    package = read_nargo_toml(project_dir)["package"]
    name = "lib.nr" if package.get("type") == "lib" else "main.nr"
    source_file = Path(project_dir) / "src" / name
    if not source_file.exists():
        raise ToolchainError(f"source file not found: {source_file}")
    return source_file


def nargo_check(project_dir):
    _run(["nargo", "check"], f"`nargo check` in {project_dir}", "nargo", cwd=project_dir)


def nargo_compile(project_dir) -> Path:
    _run(["nargo", "compile"], f"`nargo compile` in {project_dir}", "nargo", cwd=project_dir)
    name = read_nargo_toml(project_dir)["package"]["name"]
    bytecode_path = Path(project_dir) / "target" / f"{name}.json"
    if not bytecode_path.exists():
        raise ToolchainError(
            f"compiled bytecode not found at {bytecode_path} -- did nargo compile succeed for project '{name}'?"
        )
    return bytecode_path


# ---- bb ---------------------------------------------------------------------

def write_vk(bytecode_path, output_dir) -> Path:
    # keccak oracle hash for EVM-compatible verification
    _run(
        ["bb", "write_vk", "-b", str(bytecode_path), "-o", str(output_dir), "--oracle_hash", "keccak"],
        "bb write_vk",
        "barretenberg (bb)",
    )
    vk_path = Path(output_dir) / "vk"
    if not vk_path.exists():
        raise ToolchainError(f"verification key not found at {vk_path}")
    return vk_path


def write_solidity_verifier(vk_path, output_path) -> Path:
    _run(
        ["bb", "write_solidity_verifier", "-k", str(vk_path), "-o", str(output_path)],
        "bb write_solidity_verifier",
        "barretenberg (bb)",
    )
    output_path = Path(output_path)
    if not output_path.exists():
        raise ToolchainError(f"Solidity verifier not found at {output_path}")
    return output_path
