# receipt.py
# One JSON receipt per command run: {command, timestamp, data}.

import json
from dataclasses import asdict, is_dataclass
from datetime import UTC, datetime
from pathlib import Path

from chainpublish.config import get_logger
from chainpublish.errors import ReceiptError

logger = get_logger(__name__)


def build_receipt(command: str, data, now=None) -> dict:
    now = now or datetime.now(UTC)
    return {
        "command": command,
        "timestamp": now.isoformat(),
        "data": asdict(data) if is_dataclass(data) else data,
    }


def write_receipt(command: str, data, receipts_dir, now=None) -> Path:
    now = now or datetime.now(UTC)
    receipts_dir = Path(receipts_dir)
    path = receipts_dir / f"{command}-{now.strftime('%Y%m%dT%H%M%S')}.json"
    try:
        receipts_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(build_receipt(command, data, now), f, indent=2, default=str)
    except OSError as e:
        raise ReceiptError(f"failed to write receipt to {path}: {e}") from e
    logger.info("receipt written to %s", path)
    return path
