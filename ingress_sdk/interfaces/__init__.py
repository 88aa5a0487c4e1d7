"""
Interface descriptions bundled with the SDK.

The ledger and governance interfaces ship as package data so that replies
from these canisters render with field names without any network access.
"""
from importlib import resources
from typing import Dict

from ..principal import GOVERNANCE_CANISTER_ID, LEDGER_CANISTER_ID

BUNDLED_FILES = {
    LEDGER_CANISTER_ID: "ledger.did",
    GOVERNANCE_CANISTER_ID: "governance.did",
}


def read_bundled(file_name: str) -> str:
    """Read one of the bundled .did files."""
    return resources.files(__name__).joinpath(file_name).read_text(encoding="utf-8")


def bundled_sources() -> Dict[str, str]:
    """Map canister id text to the source of its bundled interface."""
    return {str(canister_id): read_bundled(name) for canister_id, name in BUNDLED_FILES.items()}
