#!/usr/bin/env python3
"""Command-line entry point for pagedriver."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from pagedriver.browser import Browser
from pagedriver.config import DriverConfig
from pagedriver.errors import PageDriverError
from pagedriver.frames import dump_frame_tree
from pagedriver.log import setup_logging
from pagedriver.page import Clip


def parse_clip(value: str) -> Clip:
    """Parse ``x,y,width,height``."""
    try:
        x, y, width, height = (float(part) for part in value.split(","))
        return Clip(x, y, width, height)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid clip {value!r}: {e}") from None


def parse_viewport(value: str) -> tuple[int, int]:
    """Parse ``WIDTHxHEIGHT``."""
    try:
        width, height = (int(part) for part in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid viewport {value!r}, expected WxH") from None
    return width, height


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagedriver",
        description="Drive a running browser over the DevTools protocol.",
    )
    parser.add_argument(
        "--browser-url",
        default=None,
        help="DevTools HTTP or websocket endpoint (default: $PAGEDRIVER_BROWSER_URL)",
    )
    parser.add_argument(
        "--min-settle-time",
        type=float,
        default=None,
        help="Seconds of network idle before a navigation completes",
    )
    parser.add_argument("--debug", action="store_true", help="Log protocol traffic")
    sub = parser.add_subparsers(dest="command", required=True)

    shot = sub.add_parser("screenshot", help="Navigate to URL and save a screenshot")
    shot.add_argument("url")
    shot.add_argument("-o", "--output", default="screenshot.png")
    shot.add_argument("--viewport", type=parse_viewport, default=None, help="WIDTHxHEIGHT")
    region = shot.add_mutually_exclusive_group()
    region.add_argument("--full-page", action="store_true")
    region.add_argument("--clip", type=parse_clip, default=None, help="x,y,width,height")

    evaluate = sub.add_parser("evaluate", help="Navigate to URL and evaluate script")
    evaluate.add_argument("url")
    evaluate.add_argument("script")

    frames = sub.add_parser("frames", help="Navigate to URL and print its frame tree")
    frames.add_argument("url")

    sub.add_parser("mcp", help="Run the MCP server on stdio")
    return parser


async def run(args: argparse.Namespace, config: DriverConfig) -> int:
    browser = await Browser.connect(args.browser_url, config=config)
    try:
        page = await browser.new_page()
        if args.command == "screenshot" and args.viewport:
            await page.set_viewport(*args.viewport)
        if not await page.goto(args.url):
            print(f"Error: navigation to {args.url} failed", file=sys.stderr)
            return 1

        if args.command == "screenshot":
            data = await page.screenshot(
                clip=args.clip, full_page=args.full_page, path=args.output
            )
            print(f"Saved {len(data)} bytes to {args.output}")
        elif args.command == "evaluate":
            print(json.dumps(await page.evaluate(args.script), indent=2))
        elif args.command == "frames":
            print(dump_frame_tree(page.main_frame))
        return 0
    finally:
        await browser.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = DriverConfig.from_env()
    if args.min_settle_time is not None:
        config.min_settle_time = args.min_settle_time
    setup_logging(config.log_level, debug=args.debug)

    if args.command == "mcp":
        from pagedriver import mcp_server

        mcp_server.main()
        return 0

    try:
        return asyncio.run(run(args, config))
    except PageDriverError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
