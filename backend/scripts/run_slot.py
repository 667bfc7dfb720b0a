#!/usr/bin/env python3
"""
Run one scheduled review-sync slot (sync + automation for every business in it) and print the summary.
Run from backend/: python -m scripts.run_slot slot_1
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def main(slot_id: str) -> int:
    from replifast.services.batch_orchestrator import BatchOrchestrator, parse_slot

    try:
        parse_slot(slot_id)
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    result = await BatchOrchestrator().run_slot(slot_id)
    print(json.dumps(result.to_dict(), indent=2, default=str))
    if result.needs_attention:
        print(f"Warning: {result.errors}/{result.processed} businesses failed in {slot_id}")
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m scripts.run_slot <slot_1|slot_2>")
        sys.exit(2)
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main(sys.argv[1])))
