"""
Command-line chat client for the relay.
Usage: chat-relay-client --session s1 [--login USER --password PASS]
"""

import sys
import asyncio
import logging
import argparse
from typing import List, Optional

from chat_relay.client.identity_client import IdentityClient
from chat_relay.client.relay_client import RelayClient
from chat_relay.core.config import config_loader
from chat_relay.core.exceptions import IdentityError, RelayConnectionError
from chat_relay.orchestration.messages import CHAT_MESSAGE_EVENT

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    transport = config_loader.get_transport_config()
    identity = config_loader.get_identity_config()

    parser = argparse.ArgumentParser(description="Chat relay client")
    parser.add_argument("-s", "--session", required=True, help="Session id to chat in")
    parser.add_argument("-u", "--url", default=transport.base_url, help="Relay WebSocket URL")
    parser.add_argument("--identity-url", default=identity.base_url, help="Identity provider API root")
    parser.add_argument("--login", help="Identifier to log in with before connecting")
    parser.add_argument("--password", help="Password for --login")
    parser.add_argument("--attempts", type=int, default=transport.reconnection_attempts,
                        help="Reconnection attempts")
    parser.add_argument("--delay", type=float, default=transport.reconnection_delay,
                        help="Seconds between reconnection attempts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def print_message(data):
    if isinstance(data, dict):
        print(f"[{data.get('sessionId')}] {data.get('id')} {data.get('sender')}: {data.get('text')}", flush=True)


async def login(args) -> Optional[str]:
    if not args.login:
        return None
    async with IdentityClient(args.identity_url, timeout=config_loader.get_identity_config().timeout) as identity:
        return await identity.login(args.login, args.password or "")


async def chat(args) -> int:
    try:
        token = await login(args)
    except IdentityError as e:
        print(f"Login failed: {e.message}", file=sys.stderr)
        return 1

    client = RelayClient(
        args.url,
        reconnection_attempts=args.attempts,
        reconnection_delay=args.delay,
        token=token,
        identity=args.login
    )
    client.on(CHAT_MESSAGE_EVENT, print_message)

    try:
        await client.connect()
    except RelayConnectionError as e:
        print(str(e), file=sys.stderr)
        return 1

    await client.join(args.session)
    listener = asyncio.create_task(client.listen())
    error = None

    try:
        while not listener.done():
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            if not line.strip() or listener.done():
                continue
            try:
                await client.send_message(args.session, line.rstrip("\n"))
            except RelayConnectionError as e:
                # Reconnect in progress
                print(f"Message not sent: {e}", file=sys.stderr)
    finally:
        await client.close()
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
        except RelayConnectionError as e:
            error = e

    if error is not None:
        print(f"Connection lost: {error}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return asyncio.run(chat(args))


if __name__ == "__main__":
    sys.exit(main())
