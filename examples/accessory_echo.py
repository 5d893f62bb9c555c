#!/usr/bin/env python3
"""
Accessory-role Echo Script.

Runs on a Linux gadget exposing the f_accessory function. Opens the
accessory stream once a host has negotiated and echoes every message back
with an "echo: " prefix.
"""

import sys
import time
import logging
import argparse
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from accessory_kit import ConnectionState, MessageChannel
from accessory_kit.transport.accessory import ACCESSORY_DEVICE_PATH

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def main():
    parser = argparse.ArgumentParser(description="Echo messages from the USB host")
    parser.add_argument("--path", default=ACCESSORY_DEVICE_PATH, help="accessory device node")
    parser.add_argument("--poll", type=float, default=1.0, help="seconds between open attempts")
    args = parser.parse_args()

    channel = MessageChannel.for_accessory(args.path)
    channel.subscribe_state(lambda state: print(f"[state] {state.value}"))
    channel.subscribe_messages(lambda text: channel.send(f"echo: {text}"))

    print(f"Waiting for a host on {args.path} (Ctrl+C to stop)...")
    try:
        while True:
            # No platform attach events here, so poll for the node
            if not channel.is_connected:
                channel.connect()
                if channel.state is ConnectionState.PERMISSION_REQUESTED:
                    print(f"No access to {args.path}; fix its permissions and retry.")
                    channel.stop_scan()
            time.sleep(args.poll)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        channel.dispose()
        print("Done.")


if __name__ == "__main__":
    main()
