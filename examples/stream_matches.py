"""Streaming scan example.

This script demonstrates how to consume `soltrail scan --format jsonl`,
printing matches as they are found instead of waiting for the whole history.
"""

import json
import signal
import subprocess
import sys


def handle_sigint(signum, frame):
    """Handle SIGINT for graceful shutdown."""
    print("\nShutting down...")
    sys.exit(0)


def main():
    """Stream InitializeMint2 matches for an address."""
    signal.signal(signal.SIGINT, handle_sigint)
    address = sys.argv[1] if len(sys.argv) > 1 else "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

    print(f"Streaming matches for {address}...")
    print("Press Ctrl+C to stop.\n")

    process = subprocess.Popen(
        ["soltrail", "scan", address, "--format", "jsonl"],
        stdout=subprocess.PIPE,
        text=True,
        bufsize=1,
    )

    for line in process.stdout:
        if not line.strip():
            continue

        event = json.loads(line)

        if event["type"] == "scan_start":
            print(f"✓ Scan started: {event['address']}, marker {event['marker']!r}")

        elif event["type"] == "log_match":
            print(f"  [{event['slot']}] {event['signature'][:16]}...  {event['log']}")

        elif event["type"] == "scan_end":
            stats = event["stats"]
            print(f"\n✓ Done: {stats['fetched']} transactions, {stats['matches']} matches")

        elif event["type"] == "scan_error":
            print(f"  ✗ Error ({event['error_code']}): {event['message']}")


if __name__ == "__main__":
    main()
