# config.py
# Global settings for chainpublish: env (via .env), explorer constants, logging.
#
# env:
#   RPC_URL=https://sepolia.infura.io/v3/<KEY>
#   PRIVATE_KEY=0x<deployer_key>
#   ETHERSCAN_API_KEY=<key>          (optional, verification is skipped without it)
#   VERIFIER_URL=<explorer api url>  (optional, defaults to Etherscan v2)
#   IPFS_RPC_URL=http://localhost:5001
#   RECEIPTS_DIR=receipts
#   LOG_FILE=<path>                  (optional)

import logging
import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

RPC_URL           = os.getenv("RPC_URL")
PRIVATE_KEY       = os.getenv("PRIVATE_KEY")
ETHERSCAN_API_KEY = os.getenv("ETHERSCAN_API_KEY")
VERIFIER_URL      = os.getenv("VERIFIER_URL")
IPFS_RPC_URL      = os.getenv("IPFS_RPC_URL", "http://localhost:5001")
RECEIPTS_DIR      = os.getenv("RECEIPTS_DIR", "receipts")
LOG_FILE          = os.getenv("LOG_FILE")

ETHERSCAN_V2_API = "https://api.etherscan.io/v2/api"

# forge default layout: <project>/out/<File.sol>/<Contract>.json
FORGE_OUT_DIR = "out"


@dataclass(frozen=True)
class VerificationConfig:
    """Timing bounds for explorer submission and status polling (seconds)."""
    poll_interval: float = 5
    max_poll_attempts: int = 20
    submit_retries: int = 3
    submit_retry_delay: float = 10
    request_timeout: float = 30


DEFAULT_VERIFICATION = VerificationConfig()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool = False, log_file=None):
    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = log_file or LOG_FILE
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def get_logger(name=None):
    return logging.getLogger(name)
