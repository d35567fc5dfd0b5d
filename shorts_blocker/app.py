from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import os
import sys
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    APPDATA_DIR,
    LOG_FILE,
    RULES_FILE,
    SETTINGS_FILE,
    STORE_KEYS,
    VERSION,
    BlockRules,
    BlockSettings,
    consume_load_warnings,
    ensure_runtime_files,
)
from .engine import ShortsBlockerEngine
from .host import SoupPage
from .logging_setup import setup_logging
from .messaging import BackgroundService, MessageBus
from .scheduler import ManualScheduler
from .store import JsonSettingsStore

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shorts-blocker",
        description=f"Shorts Blocker v{VERSION}: filter a saved page the way the live engine would",
    )
    parser.add_argument("page", nargs="?", help="HTML snapshot to filter")
    parser.add_argument("--url", type=str, default=None, help="Address the snapshot was loaded from")
    parser.add_argument("-o", "--output", type=str, default=None, help="Write the filtered HTML here")
    parser.add_argument("--settings", type=str, default=None, help="Settings store file (JSON)")
    parser.add_argument("--rules", type=str, default=None, help="Block rules file (JSON)")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=BOOL",
        help="Override a flag for this run only, e.g. blockInstagramCompletely=true",
    )
    parser.add_argument("--settle", type=float, default=0.0, help="Seconds of page time to let timers run")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Console log level")
    parser.add_argument("--log-file", type=str, default=None, help="Rotating debug log (default: app data dir)")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")
    parser.add_argument("--dump-settings", action="store_true", help="Print effective settings and exit")
    parser.add_argument("--self-check", action="store_true", help="Run environment self-check and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def parse_overrides(items: List[str]) -> Dict[str, bool]:
    valid = {key.lower(): key for key in STORE_KEYS.values()}
    valid.update({name: key for name, key in STORE_KEYS.items()})
    out: Dict[str, bool] = {}
    for item in items:
        name, sep, raw = item.partition("=")
        key = valid.get(name.strip()) or valid.get(name.strip().lower())
        if not sep or key is None:
            raise ValueError(f"unknown setting: {name.strip() or item!r}")
        word = raw.strip().lower()
        if word in _TRUE_WORDS:
            out[key] = True
        elif word in _FALSE_WORDS:
            out[key] = False
        else:
            raise ValueError(f"not a boolean: {item}")
    return out


def _check_appdata_writable() -> Tuple[bool, str]:
    try:
        os.makedirs(APPDATA_DIR, exist_ok=True)
        probe_path = os.path.join(APPDATA_DIR, ".selfcheck-write.tmp")
        with open(probe_path, "w", encoding="utf-8") as f:
            f.write("ok")
        os.remove(probe_path)
        return True, f"writable ({APPDATA_DIR})"
    except Exception as exc:
        return False, f"{exc.__class__.__name__}: {exc}"


def _check_parser_import() -> Tuple[bool, str]:
    try:
        importlib.import_module("bs4")
        importlib.import_module("soupsieve")
        return True, "bs4/soupsieve import ok"
    except Exception as exc:
        return False, f"{exc.__class__.__name__}: {exc}"


def _check_rules_load() -> Tuple[bool, str]:
    consume_load_warnings()
    rules = BlockRules.load(RULES_FILE)
    warnings = consume_load_warnings()
    if warnings:
        return False, warnings[0]
    return True, f"{len(rules.block_rules)} block rules, {len(rules.url_rules)} url rules"


def _run_self_check() -> int:
    checks: List[Tuple[str, Callable[[], Tuple[bool, str]]]] = [
        ("app data access", _check_appdata_writable),
        ("HTML parser import", _check_parser_import),
        ("block rules load", _check_rules_load),
    ]
    passed = 0
    for label, fn in checks:
        ok, detail = fn()
        if ok:
            passed += 1
        print(f"[{'OK' if ok else 'FAIL'}] {label}: {detail}")
    print(f"Summary: {passed}/{len(checks)} checks passed")
    return 0 if passed == len(checks) else 1


def open_store(path: Optional[str], overrides: Dict[str, bool], logger: logging.Logger) -> JsonSettingsStore:
    store = JsonSettingsStore(path=path or SETTINGS_FILE, logger=logger)
    if not overrides:
        return store
    # Overrides apply to this run only; the persisted file is left alone.
    scratch = JsonSettingsStore(path=None, logger=logger)
    scratch.set({**store.get(), **overrides})
    return scratch


async def run_snapshot(
    html: str,
    url: str,
    store: JsonSettingsStore,
    rules: BlockRules,
    logger: logging.Logger,
    settle_seconds: float = 0.0,
    load_warnings: Sequence[str] = (),
) -> Tuple[SoupPage, ShortsBlockerEngine]:
    scheduler = ManualScheduler()
    page = SoupPage(html, url, scheduler)
    bus = MessageBus(logger)
    BackgroundService(store, bus, rules.hosts_flat, logger)
    engine = ShortsBlockerEngine(logger, page, scheduler, bus, rules)
    if load_warnings:
        engine.report_warning(load_warnings[0])
    await engine.start()
    scheduler.run_pending()
    if settle_seconds > 0:
        scheduler.advance(settle_seconds)
    return page, engine


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])
    if args.self_check:
        return _run_self_check()

    ensure_runtime_files()
    rules = BlockRules.load(args.rules or RULES_FILE)
    logger = setup_logging(args.log_level, None if args.no_log_file else (args.log_file or LOG_FILE))
    load_warnings = consume_load_warnings()
    for warning in load_warnings:
        logger.warning(warning)

    try:
        overrides = parse_overrides(args.overrides)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    store = open_store(args.settings, overrides, logger)

    if args.dump_settings:
        effective = BlockSettings.from_mapping(store.get(STORE_KEYS.values()))
        print(json.dumps(effective.to_store(), indent=2))
        return 0

    if not args.page or not args.url:
        parser.print_usage(sys.stderr)
        print("error: a page snapshot and --url are required", file=sys.stderr)
        return 2

    try:
        with open(args.page, "r", encoding="utf-8") as f:
            html = f.read()
    except OSError as exc:
        print(f"error: cannot read {args.page}: {exc}", file=sys.stderr)
        return 1

    page, engine = asyncio.run(run_snapshot(html, args.url, store, rules, logger, args.settle, load_warnings))
    state = engine.state
    print(
        f"site={state.site or '-'} removed={state.removed_nodes} media={state.silenced_media} "
        f"overlay={state.overlay_state} url={page.url}"
    )
    if state.last_error:
        print(f"last_error={state.last_error}", file=sys.stderr)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(page.serialize())
    return 0


__all__ = ["main", "build_parser", "parse_overrides", "run_snapshot", "open_store", "VERSION"]
