#!/usr/bin/env python3
"""
Submit a previously signed artifact and print the results.
"""
import asyncio
import logging
import os
import sys

from ingress_sdk import IngressClient, TransportConfig, get_transport, read_artifact


async def submit(path: str, dry_run: bool):
    items = read_artifact(path)
    transport = get_transport(TransportConfig.from_env(), dry_run=dry_run)
    with IngressClient(transport) as client:
        return await client.send_all(items)


def main():
    logging.basicConfig(level=logging.INFO)
    path = sys.argv[1] if len(sys.argv) > 1 else "message.json"
    dry_run = os.environ.get("DRY_RUN") == "1"

    results = asyncio.run(submit(path, dry_run))
    for result in results:
        if result.request_id is not None:
            print(f"Request id: {result.request_id}")
        print(f"[{result.status}] {result.output}")
    return 0 if all(result.ok for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
