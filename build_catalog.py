#!/usr/bin/env python3
"""
Build data/territory_catalog.json from the raw sources in data/source/.

    python build_catalog.py
    python build_catalog.py --version 2026.10.2 --output /tmp/catalog.json
"""

import argparse
import logging
from pathlib import Path

from territory_engine.builder import CatalogBuilder, load_sources, write_catalog

DATA_DIR = Path(__file__).parent / "data"
SOURCE_DIR = DATA_DIR / "source"
OUTPUT = DATA_DIR / "territory_catalog.json"


def main():
    parser = argparse.ArgumentParser(description="Build the territory catalog")
    parser.add_argument("--source", default=str(SOURCE_DIR), help="Directory with raw source files")
    parser.add_argument("--output", default=str(OUTPUT), help="Catalog JSON to write")
    parser.add_argument("--version", help="Catalog version (default: today's date)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sources = load_sources(Path(args.source))
    builder = CatalogBuilder(sources["territories"], sources["municipal_utilities"], sources["tiers"])
    catalog = builder.build(sources["city_lines"], sources["zip_cities"], sources["split_zips"], version=args.version)
    write_catalog(catalog, Path(args.output))

    print(f"\nCatalog {catalog['version']}")
    print(f"  Territories:    {len(catalog['territories'])}")
    print(f"  Cities:         {len(catalog['cities'])}")
    print(f"  Direct ZIPs:    {len(catalog['zip_index'])}")
    print(f"  Split ZIPs:     {len(catalog['split_zips'])}")
    print(f"  Municipal ZIPs: {len(catalog['municipal_zips'])}")


if __name__ == "__main__":
    main()
