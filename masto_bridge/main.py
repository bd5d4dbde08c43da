#!/usr/bin/env python3
"""
Matrix-Mastodon bridge entry point.

    masto-bridge --generate-registration -u http://localhost:8090
    masto-bridge -c config.yaml
"""
import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from typing import List, Optional

import uvicorn

from masto_bridge.config import DEFAULT_CONFIG_PATH, Config, ConfigurationError, setup_logging
from masto_bridge.core.poller import NotificationPoller
from masto_bridge.core.router import BridgeContext, BridgeRouter
from masto_bridge.mastodon.client import MastodonClient
from masto_bridge.matrix.appservice import create_appservice_app
from masto_bridge.matrix.client import MatrixTransport
from masto_bridge.matrix.registration import (
    DEFAULT_REGISTRATION_PATH,
    USER_NAMESPACE_REGEX,
    Registration,
    generate_registration,
    load_registration,
    write_registration,
)

logger = logging.getLogger("masto_bridge.main")

GREETING_MESSAGE = "Hello! The bridge is now up and running."


async def announce(chat: MatrixTransport, config: Config) -> bool:
    """
    Register the bot, join the bridged room and greet it.

    Each step only runs if the previous one worked. Failures are logged and
    never fatal: the bridge keeps handling events either way.
    """
    try:
        await chat.ensure_registered(config.bot_user_id)
        logger.info(f"Bot {config.bot_user_id} has been registered.")
    except Exception as e:
        logger.error(f"Failed to register bot: {e}")
        return False

    try:
        await chat.join_room(config.bridged_room_id)
        logger.info(f"Bot {config.bot_user_id} has joined the room {config.bridged_room_id}")
        await chat.send_text(config.bridged_room_id, GREETING_MESSAGE)
        logger.info("Greeting message sent to the room.")
    except Exception as e:
        logger.error(f"Failed to join room: {e}")
        return False
    return True


def align_namespace(config: Config, registration: Registration) -> Config:
    """The homeserver routes users by the registration, so the filter follows it too."""
    regexes = registration.user_regexes
    if not regexes or regexes[0] == config.user_namespace_regex:
        return config
    logger.warning("User namespace differs from the registration; using the registration's", extra={
        "config_namespace": config.user_namespace_regex,
        "registration_namespace": regexes[0],
    })
    return replace(config, user_namespace_regex=regexes[0])


async def run_bridge(config: Config, registration_path: str, port: Optional[int] = None) -> None:
    registration = load_registration(registration_path)
    config = align_namespace(config, registration)
    port = port or config.port

    chat = MatrixTransport(
        config.homeserver_url,
        registration.as_token,
        config.bot_user_id,
        timeout=config.request_timeout,
    )
    remote = MastodonClient(
        config.mastodon_api_url,
        config.mastodon_access_token,
        timeout=config.request_timeout,
    )
    router = BridgeRouter(BridgeContext(config=config, chat=chat, remote=remote))
    poller = NotificationPoller(router, config.poll_interval, config.poll_initial_delay)

    app = create_appservice_app(registration, router.handle_event, on_user_query=chat.ensure_registered)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level=config.log_level.lower(),
    ))
    server_task = asyncio.create_task(server.serve())

    try:
        while not server.started:
            if server_task.done():
                # serve() returned before binding; surface its error
                await server_task
                logger.error("Failed to initialize the bridge: appservice listener did not start")
                return
            await asyncio.sleep(0.1)

        logger.info(f"Matrix-side listening on port {port}")
        await announce(chat, config)
        poller.start()
        await server_task
    finally:
        logger.info("Shutting down bridge")
        await poller.stop()
        await remote.close()
        await chat.close()


def registration_namespace(config_path: str) -> str:
    """User namespace for a new registration: the config's, when there is one."""
    if not os.path.exists(config_path):
        return USER_NAMESPACE_REGEX
    try:
        return Config.from_file(config_path).user_namespace_regex
    except ConfigurationError as e:
        print(f"Ignoring {config_path} ({e}); using user namespace {USER_NAMESPACE_REGEX}", file=sys.stderr)
        return USER_NAMESPACE_REGEX


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="masto-bridge",
        description="Bridge a Matrix room to a Mastodon account",
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                        help=f"Path to the YAML config (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("-r", "--registration", default=DEFAULT_REGISTRATION_PATH,
                        help=f"Path to the appservice registration (default: {DEFAULT_REGISTRATION_PATH})")
    parser.add_argument("--generate-registration", action="store_true",
                        help="Write a new registration file and exit")
    parser.add_argument("-u", "--url",
                        help="URL the homeserver uses to reach this bridge (with --generate-registration)")
    parser.add_argument("-p", "--port", type=int, help="Port for the appservice listener")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.generate_registration:
        if not args.url:
            print("--url is required with --generate-registration", file=sys.stderr)
            return 2
        registration = generate_registration(args.url, registration_namespace(args.config))
        write_registration(registration, args.registration)
        print(f"Registration written to {args.registration}")
        return 0

    try:
        config = Config.from_file(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)
    logger.info("Configuration loaded successfully", extra={"config": config.redacted()})

    try:
        asyncio.run(run_bridge(config, args.registration, args.port))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
