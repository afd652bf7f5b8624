#!/usr/bin/env python3
"""
CLI for the Texas Utility-Territory Resolution Engine.

Usage:
    python run_engine.py 75201
    python run_engine.py 75001 --address "123 Main St"
    python run_engine.py --batch zips.csv --output results.csv
    python run_engine.py --stats
    python run_engine.py --warm 50 --stats
"""

import argparse
import csv
import json
import logging
import sys
import time
from pathlib import Path

from territory_engine.config import Config
from territory_engine.engine import ResolutionEngine
from territory_engine.errors import ResolutionError
from territory_engine.models import NonDeregulatedOutcome


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def single_lookup(engine: ResolutionEngine, zip_code: str, address: str = None) -> int:
    """Resolve one ZIP (and optional address) and print JSON. Returns an exit code."""
    try:
        outcome = engine.resolve(zip_code, address=address)
    except ResolutionError as e:
        print(json.dumps(e.to_dict(), indent=2))
        return 1
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0


def batch_lookup(engine: ResolutionEngine, input_csv: str, output_csv: str):
    """Batch resolution from a CSV with a zip column (and optional address column)."""
    rows = []
    with open(input_csv, "r") as f:
        reader = csv.DictReader(f)
        fields = {c.lower(): c for c in reader.fieldnames or []}
        zip_col = fields.get("zip") or fields.get("zip_code") or fields.get("zipcode") or (reader.fieldnames or ["zip"])[0]
        addr_col = fields.get("address")
        for row in reader:
            zip_code = (row.get(zip_col) or "").strip()
            if zip_code:
                rows.append((zip_code, (row.get(addr_col) or "").strip() if addr_col else ""))

    print(f"Loaded {len(rows)} rows from {input_csv}")
    t0 = time.time()
    with open(output_csv, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["zip", "address", "method", "confidence", "territory_id", "territory_name",
                         "requires_address", "candidates", "error"])
        for zip_code, address in rows:
            try:
                outcome = engine.resolve(zip_code, address=address or None)
            except ResolutionError as e:
                writer.writerow([zip_code, address, "", "", "", "", "", "", e.code.value])
                continue
            if isinstance(outcome, NonDeregulatedOutcome):
                writer.writerow([zip_code, address, "", "", "", outcome.utility_name, "", "", outcome.code.value])
                continue
            writer.writerow([
                zip_code, address, outcome.method.value, outcome.confidence.value,
                outcome.territory_id or "", outcome.territory_name or "", outcome.requires_address,
                "|".join(c.territory_id for c in outcome.candidate_territories), "",
            ])

    print(f"Wrote {len(rows)} results to {output_csv} in {time.time() - t0:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Texas Utility-Territory Resolution Engine")
    parser.add_argument("zip", nargs="?", help="ZIP code to resolve")
    parser.add_argument("--address", help="Street address (needed for split ZIPs)")
    parser.add_argument("--batch", help="Input CSV file for batch processing")
    parser.add_argument("--output", default="results.csv", help="Output CSV for batch mode")
    parser.add_argument("--catalog", help="Path to territory_catalog.json")
    parser.add_argument("--no-cache", action="store_true", help="Use an in-memory cache instead of the SQLite file")
    parser.add_argument("--stats", action="store_true", help="Print catalog statistics and exit")
    parser.add_argument("--warm", type=int, metavar="N", help="Preload direct results for the top N cities first")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.zip and not args.batch and not args.stats and not args.warm:
        parser.print_help()
        sys.exit(1)

    config = Config.from_env()
    config.rate_limits_enabled = False
    if args.catalog:
        config.catalog_file = Path(args.catalog)
    if args.no_cache:
        config.cache_db = ":memory:"

    engine = ResolutionEngine(config)
    try:
        if args.warm:
            engine.warm_cache(args.warm)
        if args.stats:
            print(json.dumps(engine.stats(), indent=2))
        elif args.batch:
            batch_lookup(engine, args.batch, args.output)
        elif args.zip:
            sys.exit(single_lookup(engine, args.zip, args.address))
    finally:
        engine.close()


if __name__ == "__main__":
    main()
