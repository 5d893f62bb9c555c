#!/usr/bin/env python3
"""
Host-role Demo Script.

Switches the first attached Android phone into accessory mode, then sends
every line typed on stdin and prints whatever the phone sends back.
Run with sufficient USB permissions (udev rule or root on Linux).
"""

import sys
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from accessory_kit import DeviceIdentity, MessageChannel

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)

IDENTITY = DeviceIdentity(
    manufacturer="StiffSockets",
    model="USBDataExchange",
    description="USB Data Exchange Accessory",
    version="1.0",
    uri="https://github.com/StiffSockets",
    serial="0000000012345678",
)


def main():
    print("Initializing host channel...")
    channel = MessageChannel.for_host(IDENTITY)
    channel.subscribe_state(lambda state: print(f"[state] {state.value}"))
    channel.subscribe_messages(lambda text: print(f"Received: {text}"))

    print("\nLooking for an Android device...")
    if not channel.connect():
        print(f"Failed to connect: {channel.last_error}")
        channel.dispose()
        return

    print("Connected! Type a message and press Enter (Ctrl+D to quit).")

    try:
        for line in sys.stdin:
            text = line.rstrip("\n")
            if not text:
                continue
            if not channel.send(text):
                print(f"Message rejected: {channel.last_error}")
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        print("\nDisconnecting...")
        channel.dispose()
        print("Done.")


if __name__ == "__main__":
    main()
