# ipfs.py
# Upload a file to an IPFS node through its RPC API (POST /api/v0/add, multipart).

from dataclasses import dataclass
from pathlib import Path

import requests

from chainpublish.errors import IpfsError


@dataclass(frozen=True)
class IpfsAddResult:
    name: str
    hash: str
    size: str


def add_file(ipfs_rpc_url: str, file_path, session=None, timeout=60) -> IpfsAddResult:
    file_path = Path(file_path)
    try:
        content = file_path.read_bytes()
    except OSError as e:
        raise IpfsError(f"failed to read file: {file_path}: {e}") from e

    url = ipfs_rpc_url.rstrip("/") + "/api/v0/add"
    files = {"file": (file_path.name, content, "application/octet-stream")}
    http = session or requests
    try:
        r = http.post(url, files=files, timeout=timeout)
    except requests.RequestException as e:
        raise IpfsError(
            f"failed to upload {file_path} to IPFS at {url} -- is the IPFS daemon running? ({e})"
        ) from e

    if r.status_code // 100 != 2:
        raise IpfsError(f"IPFS add failed for {file_path} (HTTP {r.status_code} from {url}): {r.text}")

    try:
        body = r.json()
        return IpfsAddResult(name=body["Name"], hash=body["Hash"], size=str(body["Size"]))
    except (ValueError, KeyError, TypeError) as e:
        raise IpfsError(f"failed to parse IPFS add response from {url} for {file_path}: {e}") from e
