"""
Namespace management CLI.

Shows or changes the namespace the highlighter publishes to and prints the
matching overlay URL. A running highlighter picks up changes made here on
its next namespace poll and reconnects immediately.

Usage:
    python -m scripts.namespace show
    python -m scripts.namespace set my-channel
    python -m scripts.namespace check
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from services.overlay.messages import endpoint_url
from shared.config.highlighter import HighlighterConfig, load_highlighter_config
from shared.config.namespace_store import NamespaceStore


def overlay_url(config: HighlighterConfig, namespace: str) -> str:
    return endpoint_url(config.overlay_origin, namespace, role="overlay")


# ------------------------------------------------------------
# Commands
# ------------------------------------------------------------

def cmd_show(config: HighlighterConfig, store: NamespaceStore) -> int:
    namespace = store.get()
    print(f"namespace: {namespace}")
    print(f"overlay:   {overlay_url(config, namespace)}")
    print(f"extension: {endpoint_url(config.ws_origin, namespace)}")
    return 0


def cmd_set(config: HighlighterConfig, store: NamespaceStore, value: str) -> int:
    store.get()
    if not store.set(value):
        print(f"[NAMESPACE ERROR] Save failed: could not write {store.path}", file=sys.stderr)
        return 1

    namespace = store.get()
    print(f"Saved ✓ namespace: {namespace}")
    print(f"overlay: {overlay_url(config, namespace)}")
    return 0


def cmd_check(config: HighlighterConfig, store: NamespaceStore, timeout: float) -> int:
    url = overlay_url(config, store.get())
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        print(f"[NAMESPACE ERROR] {url} unreachable: {e}", file=sys.stderr)
        return 1

    if response.status_code >= 400:
        print(f"[NAMESPACE ERROR] {url} answered {response.status_code}", file=sys.stderr)
        return 1

    print(f"{url} reachable ({response.status_code})")
    return 0


# ------------------------------------------------------------
# Entrypoint
# ------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the chat highlighter namespace")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("show", help="print the namespace and overlay URL")

    set_parser = sub.add_parser("set", help="store a new namespace (blank resets to default)")
    set_parser.add_argument("namespace")

    check_parser = sub.add_parser("check", help="verify the overlay URL answers")
    check_parser.add_argument("--timeout", type=float, default=5.0)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = load_highlighter_config()
    store = NamespaceStore(config.namespace_path, default=config.default_namespace)

    if args.command == "show":
        return cmd_show(config, store)
    if args.command == "set":
        return cmd_set(config, store, args.namespace)
    return cmd_check(config, store, args.timeout)


if __name__ == "__main__":
    sys.exit(main())
