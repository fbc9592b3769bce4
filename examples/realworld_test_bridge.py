#!/usr/bin/env python3
"""Real-world integration demo: synchronise a Hue bridge or deCONZ gateway.

This script runs the full lifecycle of a :class:`HueBridge` against a
real bridge on the local network:

  **Phase 1: Discovery and pairing**

  1. Discover bridges via mDNS and the vendor portals (unless a host
     is given on the command line).
  2. Connect, and create a username if the store has none (press the
     link button on the bridge when asked).
  3. Build the accessories and print them.

  **Phase 2: Live synchronisation**

  1. Start the push channel and the heartbeat.
  2. Log every presented-state change and button press.
  3. Toggle the first light off and on again.
  4. Wait for the user to press Enter, then shut down.

Run from the project root::

    python examples/realworld_test_bridge.py [host]
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure the package is importable when running from the repo root.
# ---------------------------------------------------------------------------
_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from pyHueSync import (  # noqa: E402
    BridgeDiscovery,
    BridgeOptions,
    BridgeStore,
    HueBridge,
    ReconcilerObserver,
    ResourceKind,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

#: Credentials file.
STORE_FILE = Path("/tmp/pyHueSync_demo_bridges.yaml")

#: Seconds to wait for discovery.
DISCOVERY_TIMEOUT = 5

# ---------------------------------------------------------------------------
# Logging: colourful, timestamped, to stdout
# ---------------------------------------------------------------------------
BOLD = "\033[1m"
GREEN = "\033[32m"
CYAN = "\033[36m"
YELLOW = "\033[33m"
RED = "\033[31m"
RESET = "\033[0m"


class ColourFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        logging.DEBUG: CYAN,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: RED + BOLD,
    }

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        return (
            f"{BOLD}{ts}{RESET} "
            f"{colour}{record.levelname:<8s}{RESET} "
            f"{record.name}: {record.getMessage()}"
        )


def setup_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColourFormatter())
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    root.addHandler(handler)
    # Suppress noisy zeroconf and aiohttp internals.
    logging.getLogger("zeroconf").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Observer: logs what the consumer would see
# ---------------------------------------------------------------------------


class DemoObserver(ReconcilerObserver):

    def __init__(self) -> None:
        self.logger = logging.getLogger("demo.observer")

    def on_presented_change(self, resource, key, old, new):
        self.logger.info("%s: %s = %r (was %r)", resource.name, key, new, old)

    def on_button_event(self, resource, button, event):
        self.logger.info(
            "%s: button %d %s", resource.name, button, event.name.lower()
        )

    def on_resource_added(self, path, obj):
        self.logger.info("%s added; restart to expose it", path)

    def on_stream_state(self, listening):
        self.logger.info("push channel %s", "up" if listening else "down")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def wait_for_user(prompt: str) -> None:
    """Wait for the user to press Enter without blocking the event loop."""
    loop = asyncio.get_running_loop()
    print()
    print(f"{BOLD}{YELLOW}{prompt}{RESET}")
    await loop.run_in_executor(None, sys.stdin.readline)


def banner(text: str) -> None:
    """Print a prominent banner to the console."""
    width = 60
    print()
    print(f"{BOLD}{CYAN}{'=' * width}{RESET}")
    print(f"{BOLD}{CYAN} {text.center(width - 2)} {RESET}")
    print(f"{BOLD}{CYAN}{'=' * width}{RESET}")
    print()


async def pick_host(logger: logging.Logger) -> str:
    if len(sys.argv) > 1:
        return sys.argv[1]
    bridges = await BridgeDiscovery(timeout=DISCOVERY_TIMEOUT).discover()
    if not bridges:
        raise SystemExit("No bridge found; pass the host on the command line.")
    for host, bridgeid in bridges.items():
        logger.info("found %s at %s", bridgeid, host)
    return next(iter(bridges))


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def main() -> None:
    setup_logging()
    logger = logging.getLogger("demo")

    # ==================================================================
    # PHASE 1: Discovery and pairing
    # ==================================================================
    banner("PHASE 1: Discovery and pairing")

    host = await pick_host(logger)
    options = BridgeOptions(
        host=host,
        link_button=True,
        groups=True,
        heartrate=5,
    )
    bridge = HueBridge(
        options, store=BridgeStore(STORE_FILE), observer=DemoObserver()
    )
    logger.info("Connecting to %s; press the link button if asked", host)
    await bridge.start()

    for serial, accessory in bridge.reconciler.accessories.items():
        logger.info(
            "%s: %s (%s %s, firmware %s)", serial, accessory.name,
            accessory.manufacturer, accessory.model, accessory.firmware,
        )
        for resource in accessory.resources:
            logger.info("    %s %r", resource.path, resource.presented)

    # ==================================================================
    # PHASE 2: Live synchronisation
    # ==================================================================
    banner("PHASE 2: Live synchronisation")

    try:
        lights = bridge.reconciler.resources[ResourceKind.LIGHT]
        if lights:
            rid = next(iter(lights))
            light = lights[rid]
            was_on = bool(light.presented.get("on"))
            logger.info("Toggling %s", light.name)
            await bridge.reconciler.set(ResourceKind.LIGHT, rid, "on", not was_on)
            await asyncio.sleep(2)
            await bridge.reconciler.set(ResourceKind.LIGHT, rid, "on", was_on)
        else:
            logger.info("No lights exposed; whitelist some with a resourcelink")

        await wait_for_user(
            ">>> Change lights or press switches, then press Enter to stop <<<"
        )
    finally:
        await bridge.stop()

    banner("Demo complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
