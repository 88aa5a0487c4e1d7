#!/usr/bin/env python3
"""
Sign a call on an offline machine and write it to an artifact file.

The resulting JSON file can be carried to a networked machine and
submitted with submit_artifact.py.
"""
import os
import sys

from ingress_sdk import (
    CallKind, InterfaceTypeContext, build_call, is_query, load_identity, sign_call,
    sign_call_and_status_query, write_artifact
)


def main():
    """
    Demonstrate offline signing.

    This example shows how to:
    1. Load an identity from a PEM file
    2. Build a canonical call, as a query if the interface says so
    3. Sign it and persist the envelope (or bundle for update calls)
    """
    PEM_FILE = os.environ.get("PEM_FILE")
    CANISTER_ID = os.environ.get("CANISTER_ID", "ryjl3-tyaaa-aaaaa-aaaba-cai")
    METHOD = os.environ.get("METHOD", "transfer_fee")
    # Candid-encoded arguments; the default is (record {})
    ARG_HEX = os.environ.get("ARG_HEX", "4449444c016c000100")
    OUTPUT = os.environ.get("OUTPUT", "message.json")

    if not PEM_FILE:
        print("ERROR: PEM_FILE environment variable is required")
        return 1

    with open(PEM_FILE, "rb") as f:
        identity = load_identity(f.read())
    print(f"Signing as {identity.sender}")

    kind = CallKind.QUERY if is_query(InterfaceTypeContext.bundled(), CANISTER_ID, METHOD) else CallKind.UPDATE
    call = build_call(identity.sender, CANISTER_ID, METHOD, bytes.fromhex(ARG_HEX), kind)

    if kind == CallKind.UPDATE:
        bundle = sign_call_and_status_query(identity, call)
        write_artifact(OUTPUT, [bundle])
        print(f"Wrote update call {bundle.request_id} to {OUTPUT}")
    else:
        write_artifact(OUTPUT, sign_call(identity, call))
        print(f"Wrote query {METHOD} to {OUTPUT}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
