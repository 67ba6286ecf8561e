#!/usr/bin/env python3
"""
Test script for the actuator controller.
Verifies connectivity and sends open/closed states to the configured host.
"""

import sys
import asyncio
import logging
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import Config, ConfigurationError
from models import DoorState
from notification_link import NotificationLink


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_tests(config: Config, send_states: bool) -> bool:
    link = NotificationLink(config)
    try:
        logger.info("=" * 60)
        logger.info(f"Testing actuator at {config.actuator.base_url}")
        logger.info("=" * 60)

        if not await link.test_connectivity():
            logger.error(f"❌ Connection test failed: {link.status.status_text}")
            return False
        logger.info("✅ Actuator reachable")

        if not send_states:
            return True

        for state in (DoorState.OPEN, DoorState.CLOSED):
            if await link.notify(state):
                logger.info(f"✅ Sent '{state.value}' ({link.status.last_status_code})")
            else:
                logger.error(f"❌ Sending '{state.value}' failed: {link.status.status_text}")
                return False
            await asyncio.sleep(1)
        return True
    finally:
        link.close()


def main():
    send_states = "--send" in sys.argv[1:]

    try:
        config = Config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Set ACTUATOR_HOST (and optionally ACTUATOR_PORT) in .env")
        sys.exit(1)

    success = asyncio.run(run_tests(config, send_states))
    if success:
        logger.info("🎉 Actuator test passed")
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
