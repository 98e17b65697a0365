"""Basic log-marker scan example.

This script demonstrates how to use soltrail to find the transactions in an
account's history whose program logs contain a marker.
"""

import json
import subprocess
import sys


def main():
    """Scan an account for InitializeMint2 log lines."""
    address = sys.argv[1] if len(sys.argv) > 1 else "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
    print(f"Scanning {address} for InitializeMint2 (first 500 transactions)...")

    result = subprocess.run(
        ["soltrail", "scan", address, "--marker", "InitializeMint2", "--limit", "500", "--format", "json"],
        capture_output=True,
        text=True,
    )

    if result.returncode != 0:
        print(f"Error: {result.stderr}")
        return

    data = json.loads(result.stdout)
    stats = data["stats"]

    print(f"\nScan Results ({data['scan_time']}):")
    print(f"Transactions fetched: {stats['fetched']} (absent {stats['absent']}, failed {stats['failed']})")
    print(f"Matches: {len(data['matches'])}")

    for match in data["matches"][:10]:
        print(f"  • slot {match['slot']}  {match['signature'][:16]}...")
        print(f"    {match['log']}")


if __name__ == "__main__":
    main()
