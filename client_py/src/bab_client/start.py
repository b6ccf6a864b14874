#!/usr/bin/env python3
"""Headless runner for the BAB client"""

import asyncio
import logging
import os

from .client import GameClient
from .config import config_from_env
from .constants import EVENT_HAND_CHANGED, EVENT_STATE_RESTORED
from .errors import ClientError

logger = logging.getLogger(__name__)


async def run():
    config = config_from_env()
    client = GameClient(config)

    client.connection.on_state_change(
        lambda kind, data: logger.info(f"Connection {kind}: {data}")
    )
    client.state.on(EVENT_STATE_RESTORED, lambda data: logger.info(f"State restored: {client.state.to_dict()}"))
    client.state.on(EVENT_HAND_CHANGED, lambda cards: logger.info(f"Hand: {', '.join(str(c) for c in cards)}"))

    logger.info(f"Connecting to {config.server_url}")
    try:
        await client.connect(timeout=30)
    except ClientError:
        await client.disconnect()
        raise

    username = os.getenv("BAB_USERNAME")
    password = os.getenv("BAB_PASSWORD")
    if username and password:
        client.sign_in(username, password)

    try:
        await asyncio.Event().wait()
    finally:
        await client.disconnect()


def main():
    config = config_from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped")
    except ClientError as e:
        logger.error(f"Client stopped: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
