"""Open a chat session against a live deployment and report what happens."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections import Counter
from typing import Any

from flurry import configure_logging
from flurry.chat.session import ChatContext, ChatSession
from flurry.config import get_settings
from flurry.monitoring.registry import registry
from flurry.realtime.websocket import WebSocketEventChannel
from flurry.schemas.events import ChannelEvent
from flurry.services.http import HttpMessageService

logger = logging.getLogger(__name__)


def _describe(session: ChatSession) -> list[dict[str, Any]]:
    return [
        {
            "id": message.id,
            "from": message.sender_id,
            "kind": message.kind.value,
            "state": message.delivery_state.value,
            "body": message.body,
            "reactions": [group.emoji for group in session.reaction_groups(message.id)],
        }
        for message in session.messages
    ]


async def run_probe(args: argparse.Namespace) -> dict[str, Any]:
    """Entry point used by the CLI wrapper."""

    settings = get_settings()
    api_url = args.api_url or settings.api_base_url
    realtime_url = args.realtime_url or settings.realtime_url

    async def token_provider() -> str | None:
        return args.token

    service = HttpMessageService(token_provider=token_provider, settings=settings, base_url=api_url)
    channel = WebSocketEventChannel(realtime_url, token=args.token, open_timeout=args.open_timeout)
    outcomes: Counter[str] = Counter()

    def print_event(event: ChannelEvent, outcome: str) -> None:
        outcomes[outcome] += 1
        payload = event.payload.model_dump(mode="json", exclude_none=True)
        print(f"<- {event.type} [{outcome}]: {json.dumps(payload, default=str)}")

    session = ChatSession(
        ChatContext(
            local_user_id=args.user_id,
            service=service,
            channel=channel,
            settings=settings,
        )
    )
    session.on_peer_typing = lambda typing: print(f"   peer typing: {typing}")
    session.on_event = print_event

    stop = asyncio.Event()

    def _cancel(signum: int, _frame: Any) -> None:  # pragma: no cover - signal handling
        logger.warning("received signal %s, closing probe", signum)
        stop.set()

    handlers: dict[int, Any] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):  # pragma: no cover - platform specific
        with contextlib.suppress(ValueError):
            handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, _cancel)

    try:
        await channel.start()
        await session.open(args.peer_id)
        logger.info("conversation with %s loaded: %s messages", args.peer_id, len(session.messages))

        if args.send:
            confirmed = await session.send(args.send)
            if confirmed is None:
                logger.warning("message was not confirmed by the server")
            else:
                logger.info("message confirmed as %s", confirmed.id)

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=args.duration)

        summary = {
            "peer_id": args.peer_id,
            "events_applied": outcomes["applied"],
            "events_ignored": outcomes["ignored"],
            "messages": _describe(session),
        }
    finally:
        await session.close()
        await channel.close()
        await service.aclose()
        for signum, previous in handlers.items():  # pragma: no cover - best effort cleanup
            with contextlib.suppress(ValueError):
                signal.signal(signum, previous)
    return summary


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("user_id", help="Identifier of the signed-in user")
    parser.add_argument("peer_id", help="Identifier of the conversation peer")
    parser.add_argument("--token", help="Bearer token used for authentication", default=None)
    parser.add_argument("--api-url", default=None, help="Message API base URL (defaults to FLURRY_API_BASE_URL)")
    parser.add_argument("--realtime-url", default=None, help="Websocket URL (defaults to FLURRY_REALTIME_URL)")
    parser.add_argument("--send", default=None, help="Send one text message after the history is loaded")
    parser.add_argument(
        "--duration",
        type=float,
        default=30.0,
        help="How long to keep listening for events (seconds)",
    )
    parser.add_argument(
        "--open-timeout",
        type=float,
        default=10.0,
        help="Timeout for establishing the websocket connection",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the summary as JSON for machine processing",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print the engine metrics after the probe finishes",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity level",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    configure_logging(args.log_level)

    try:
        summary = asyncio.run(run_probe(args))
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("interrupted by user")
        return 130
    except OSError as exc:
        logger.error("could not reach the deployment: %s", exc)
        return 1

    if args.json:
        print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    else:
        print("\n=== Conversation ===")
        for message in summary["messages"]:
            reactions = " ".join(message["reactions"])
            print(f"[{message['state']:>9}] {message['from']}: {message['body'] or '<' + message['kind'] + '>'} {reactions}")
        print(f"events applied: {summary['events_applied']}, ignored: {summary['events_ignored']}")
    if args.metrics:
        print(registry.render())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
