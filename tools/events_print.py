from __future__ import annotations

import argparse
import asyncio
import json

import websockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print navaid websocket messages (/events or /stt)")
    parser.add_argument("--url", default="ws://127.0.0.1:8765/events")
    parser.add_argument("--skip-status", action="store_true", help="Hide the once-per-second status messages")
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    async with websockets.connect(args.url) as ws:
        async for msg in ws:
            if args.skip_status:
                try:
                    if json.loads(msg).get("type") == "status":
                        continue
                except (ValueError, AttributeError):
                    pass
            print(msg)


if __name__ == "__main__":
    asyncio.run(main())
