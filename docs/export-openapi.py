#!/usr/bin/env python3
"""
Write the Aurelia API's OpenAPI document to docs/openapi.json.

Usage:
    python docs/export-openapi.py [--url http://localhost:8000]

Without a reachable server the app is imported and the document generated
offline.
"""

import argparse
import json
from pathlib import Path

import httpx

OUTPUT_FILE = Path(__file__).parent / "openapi.json"


def fetch(base_url: str) -> dict | None:
    url = f"{base_url.rstrip('/')}/api/v1/openapi.json"
    print(f"Fetching OpenAPI document from {url}...")
    try:
        response = httpx.get(url, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"HTTP fetch failed ({e}). Falling back to local app import...")
        return None
    return response.json()


def generate() -> dict:
    from aurelia.main import app

    return app.openapi()


def main():
    parser = argparse.ArgumentParser(description="Export the Aurelia OpenAPI document")
    parser.add_argument("--url", default="http://localhost:8000", help="API Base URL")
    args = parser.parse_args()

    spec = fetch(args.url)
    source = args.url
    if spec is None:
        spec = generate()
        source = "local app import (offline)"

    with open(OUTPUT_FILE, "w", encoding="utf-8") as f:
        json.dump(spec, f, indent=2)

    print(f"OpenAPI document exported to {OUTPUT_FILE} (source: {source})")
    print(f"  Total paths: {len(spec.get('paths', {}))}")


if __name__ == "__main__":
    main()
