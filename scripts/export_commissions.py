#!/usr/bin/env python
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from onboarding.application import create_customer_service
from onboarding.core.settings import Settings
from onboarding.reports.commissions import export_commission_report


async def _export(output: Path) -> int:
    service = create_customer_service(Settings.from_env())
    try:
        customers = await service.load_all()
        export_commission_report(output, customers)
        return len(customers)
    finally:
        await service.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Export per-rep commission entries to CSV")
    parser.add_argument("--output", required=True, help="output file path (.csv)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    output = Path(args.output)
    count = asyncio.run(_export(output))
    print(f"Wrote commission entries for {count} customers to {output}")


if __name__ == "__main__":
    main()
