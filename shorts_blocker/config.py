from __future__ import annotations

import json
import os
import re
import shutil
import sys
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

VERSION = "1.2.0"
APP_NAME = "Shorts Blocker"
APPDATA_DIRNAME = "ShortsBlocker"

_LOAD_WARNINGS: List[str] = []
_LOAD_WARNINGS_LOCK = threading.Lock()


def _push_load_warning(message: str) -> None:
    with _LOAD_WARNINGS_LOCK:
        _LOAD_WARNINGS.append(message)


def consume_load_warnings() -> List[str]:
    with _LOAD_WARNINGS_LOCK:
        out = list(_LOAD_WARNINGS)
        _LOAD_WARNINGS.clear()
        return out


def resource_base_dir() -> str:
    if getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS"):
        return str(getattr(sys, "_MEIPASS"))
    return str(Path(__file__).resolve().parents[1])


def get_app_data_dir() -> str:
    override = os.environ.get("SHORTS_BLOCKER_HOME")
    if override:
        path = Path(override)
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        path = Path(base) / APPDATA_DIRNAME
    path.mkdir(parents=True, exist_ok=True)
    return str(path)


APPDATA_DIR = get_app_data_dir()
SETTINGS_FILE = os.path.join(APPDATA_DIR, "settings.json")
RULES_FILE = os.path.join(APPDATA_DIR, "block_rules.json")
LOG_FILE = os.path.join(APPDATA_DIR, "shorts_blocker.log")

BROKEN_BACKUP_KEEP_COUNT = 10
BROKEN_BACKUP_MAX_AGE_DAYS = 30
_BROKEN_SUFFIX_RE = re.compile(r"\.broken-(\d{8}-\d{6})$")


def _coerce_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _coerce_int(value: Any, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        out = default
    else:
        out = value
    if minimum is not None:
        out = max(out, minimum)
    if maximum is not None:
        out = min(out, maximum)
    return out


def _coerce_float(value: Any, default: float, minimum: float | None = None, maximum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        out = float(default)
    else:
        out = float(value)
    if minimum is not None:
        out = max(out, minimum)
    if maximum is not None:
        out = min(out, maximum)
    return out


def _coerce_str(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _coerce_str_list(value: Any, default: List[str]) -> List[str]:
    if not isinstance(value, list):
        return list(default)
    out = [x for x in value if isinstance(x, str) and x.strip()]
    return out if out else list(default)


def _coerce_str_list_map(value: Any, default: Dict[str, List[str]]) -> Dict[str, List[str]]:
    if not isinstance(value, dict):
        return {k: list(v) for k, v in default.items()}
    out: Dict[str, List[str]] = {}
    for key, items in value.items():
        if not isinstance(key, str) or not key.strip():
            continue
        coerced = _coerce_str_list(items, [])
        if coerced:
            out[key] = coerced
    return out if out else {k: list(v) for k, v in default.items()}


def _coerce_dict_list(value: Any, default: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return [dict(x) for x in default]
    out = [dict(x) for x in value if isinstance(x, dict)]
    return out if out else [dict(x) for x in default]


def _coerce_template(value: Any, default: str, name: str, **sample: Any) -> str:
    text = _coerce_str(value, default)
    try:
        text.format(**sample)
    except (KeyError, IndexError, ValueError, AttributeError, TypeError) as exc:
        _push_load_warning(
            f"block_rules.json {name} is not a usable template ({exc.__class__.__name__}). Using default text."
        )
        return default
    return text


def _backup_broken_json(path: str, label: str, reason: str) -> None:
    if not os.path.exists(path):
        return
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_path = f"{path}.broken-{timestamp}"
    try:
        shutil.copy2(path, backup_path)
        _push_load_warning(f"{label} is corrupted: {reason}. Backup written to {backup_path}. Using defaults.")
    except Exception as exc:
        _push_load_warning(
            f"{label} is corrupted: {reason}. Backup failed ({exc.__class__.__name__}). Using defaults."
        )
    _cleanup_broken_backups(path, label)


def _backup_timestamp(path: Path) -> datetime:
    match = _BROKEN_SUFFIX_RE.search(path.name)
    if match:
        try:
            return datetime.strptime(match.group(1), "%Y%m%d-%H%M%S")
        except Exception:
            pass
    try:
        return datetime.fromtimestamp(path.stat().st_mtime)
    except Exception:
        return datetime.min


def _cleanup_broken_backups(path: str, label: str) -> None:
    base_path = Path(path)
    parent = base_path.parent
    pattern = f"{base_path.name}.broken-*"
    now = datetime.now()
    max_age = timedelta(days=BROKEN_BACKUP_MAX_AGE_DAYS)

    try:
        backups = list(parent.glob(pattern))
    except Exception as exc:
        _push_load_warning(f"{label} backup cleanup failed ({exc.__class__.__name__}).")
        return

    for backup in backups:
        if now - _backup_timestamp(backup) <= max_age:
            continue
        try:
            backup.unlink()
        except Exception as exc:
            _push_load_warning(f"{label} backup cleanup failed: {backup.name} ({exc.__class__.__name__})")

    keep = sorted(
        [p for p in parent.glob(pattern) if p.exists()],
        key=_backup_timestamp,
        reverse=True,
    )
    for old in keep[BROKEN_BACKUP_KEEP_COUNT:]:
        try:
            old.unlink()
        except Exception as exc:
            _push_load_warning(f"{label} backup cleanup failed: {old.name} ({exc.__class__.__name__})")


def load_json_object(path: str, label: str) -> dict[str, Any] | None:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return None
    except Exception as exc:
        _backup_broken_json(path, label, f"JSON parse failed ({exc.__class__.__name__})")
        return None
    if not isinstance(raw, dict):
        _backup_broken_json(path, label, "top-level value is not an object")
        return None
    return raw


# Store keys are shared with the toggle panel and the background context.
STORE_KEYS: Dict[str, str] = {
    "block_youtube_shorts": "blockYouTubeShorts",
    "block_instagram_reels": "blockInstagramReels",
    "block_instagram_completely": "blockInstagramCompletely",
    "block_vertical_video": "blockVerticalVideo",
}


@dataclass(frozen=True)
class BlockSettings:
    block_youtube_shorts: bool = True
    block_instagram_reels: bool = True
    block_instagram_completely: bool = False
    block_vertical_video: bool = False

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]], base: Optional["BlockSettings"] = None) -> "BlockSettings":
        """Build settings from store-keyed values.

        Keys that are missing or not booleans keep the value from ``base``
        (or the install defaults), so a partial or garbled mapping never
        produces an unsafe state.
        """
        start = base or cls()
        if not isinstance(raw, Mapping):
            return start
        updates = {}
        for name, key in STORE_KEYS.items():
            if key in raw:
                updates[name] = _coerce_bool(raw.get(key), getattr(start, name))
        return replace(start, **updates) if updates else start

    def to_store(self) -> Dict[str, bool]:
        return {STORE_KEYS[f.name]: bool(getattr(self, f.name)) for f in fields(self)}

    def is_enabled(self, flag: str) -> bool:
        return bool(getattr(self, flag, False))

    @classmethod
    def default_store_values(cls) -> Dict[str, bool]:
        return cls().to_store()

    @staticmethod
    def flag_names() -> List[str]:
        return list(STORE_KEYS)


class SettingsCache:
    """Process-local mirror of the store flags read by the engine."""

    def __init__(self, initial: Optional[BlockSettings] = None) -> None:
        self._current = initial or BlockSettings()

    @property
    def current(self) -> BlockSettings:
        return self._current

    def replace(self, settings: BlockSettings) -> BlockSettings:
        previous = self._current
        self._current = settings
        return previous


def _default_block_rules() -> List[Dict[str, Any]]:
    return [
        {
            "site": "youtube",
            "kinds": ["ytd-guide-entry-renderer", "ytd-mini-guide-entry-renderer"],
            "flag": "block_youtube_shorts",
            "signal": "descendant",
            "value": 'a[href="/shorts"], a[title="Shorts"]',
            "description": "Shorts entry in the guide sidebar",
        },
        {
            "site": "youtube",
            "kinds": ["ytd-rich-shelf-renderer"],
            "flag": "block_youtube_shorts",
            "signal": "attribute",
            "value": "is-shorts",
            "description": "Shorts shelf on the home feed",
        },
        {
            "site": "youtube",
            "kinds": ["ytd-reel-shelf-renderer"],
            "flag": "block_youtube_shorts",
            "signal": "descendant",
            "value": 'a[href*="/shorts/"]',
            "description": "Shorts shelf in search and watch pages",
        },
        {
            "site": "youtube",
            "kinds": [
                "ytd-video-renderer",
                "ytd-compact-video-renderer",
                "ytd-grid-video-renderer",
                "ytd-rich-item-renderer",
            ],
            "flag": "block_youtube_shorts",
            "signal": "descendant",
            "value": 'a[href*="/shorts/"]',
            "description": "Single Short in feed, search or grid",
        },
        {
            "site": "youtube",
            "kinds": ["ytd-rich-item-renderer"],
            "flag": "block_vertical_video",
            "signal": "vertical_media",
            "value": "video",
            "description": "Inline preview with vertical video",
        },
        {
            "site": "instagram",
            "kinds": ["main", "role=main"],
            "flag": "block_instagram_completely",
            "signal": "primary_root",
            "value": "",
            "description": "Primary content root when the whole site is blocked",
        },
        {
            "site": "instagram",
            "kinds": ["role=menuitem", "role=link"],
            "flag": "block_instagram_reels",
            "signal": "descendant",
            "value": 'a[href="/reels/"]',
            "description": "Reels tab in navigation",
        },
        {
            "site": "instagram",
            "kinds": ["article"],
            "flag": "block_instagram_reels",
            "signal": "descendant",
            "value": 'a[href*="/reel/"]',
            "description": "Reel post in the feed",
        },
        {
            "site": "instagram",
            "kinds": ["section"],
            "flag": "block_instagram_reels",
            "signal": "descendant",
            "value": '[data-testid*="reel"]',
            "description": "Reels tray",
        },
        {
            "site": "instagram",
            "kinds": ["article"],
            "flag": "block_vertical_video",
            "signal": "vertical_media",
            "value": "video",
            "description": "Feed post with vertical video",
        },
    ]


def _default_url_rules() -> List[Dict[str, Any]]:
    return [
        {
            "site": "youtube",
            "flag": "block_youtube_shorts",
            "segments": ["shorts"],
            "query_marks": True,
            "label": "YouTube Shorts",
            "redirect": "https://www.youtube.com/",
        },
        {
            "site": "instagram",
            "flag": "block_instagram_reels",
            "segments": ["reel", "reels"],
            "query_marks": False,
            "label": "Instagram Reels",
            "redirect": "https://www.instagram.com/",
        },
        {
            "site": "instagram",
            "flag": "block_instagram_completely",
            "segments": [],
            "query_marks": False,
            "label": "Instagram",
            "redirect": "https://www.google.com/",
        },
    ]


@dataclass
class BlockRules:
    site_hosts: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "youtube": ["youtube.com"],
            "instagram": ["instagram.com"],
        }
    )
    candidate_selectors: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "youtube": [
                "ytd-guide-entry-renderer",
                "ytd-mini-guide-entry-renderer",
                "ytd-rich-shelf-renderer",
                "ytd-reel-shelf-renderer",
                "ytd-video-renderer",
                "ytd-compact-video-renderer",
                "ytd-grid-video-renderer",
                "ytd-rich-item-renderer",
            ],
            "instagram": [
                "main",
                '[role="main"]',
                "article",
                'div[role="menuitem"]',
                'div[role="link"]',
                "section",
            ],
        }
    )
    block_rules: List[Dict[str, Any]] = field(default_factory=_default_block_rules)
    url_rules: List[Dict[str, Any]] = field(default_factory=_default_url_rules)
    debounce_ms: int = 100
    countdown_seconds: int = 5
    vertical_video_margin: float = 0.2
    log_rate_limit_seconds: float = 8.0
    overlay_title: str = "{label} Blocked"
    overlay_message: str = "This {label_lower} page has been blocked by Shorts Blocker."
    overlay_countdown: str = "Redirecting in {seconds} seconds..."
    overlay_cancel_text: str = "Stay on this page"

    @property
    def hosts_flat(self) -> List[str]:
        return [token for tokens in self.site_hosts.values() for token in tokens]

    @classmethod
    def load(cls, path: str = RULES_FILE) -> "BlockRules":
        defaults = cls()
        raw = load_json_object(path, "block_rules.json")
        if raw is None:
            return defaults

        margin = _coerce_float(raw.get("vertical_video_margin"), defaults.vertical_video_margin, minimum=0.0, maximum=5.0)
        return cls(
            site_hosts=_coerce_str_list_map(raw.get("site_hosts"), defaults.site_hosts),
            candidate_selectors=_coerce_str_list_map(raw.get("candidate_selectors"), defaults.candidate_selectors),
            block_rules=_coerce_dict_list(raw.get("block_rules"), defaults.block_rules),
            url_rules=_coerce_dict_list(raw.get("url_rules"), defaults.url_rules),
            debounce_ms=_coerce_int(raw.get("debounce_ms"), defaults.debounce_ms, minimum=10, maximum=2000),
            countdown_seconds=_coerce_int(raw.get("countdown_seconds"), defaults.countdown_seconds, minimum=1, maximum=30),
            vertical_video_margin=margin,
            log_rate_limit_seconds=_coerce_float(
                raw.get("log_rate_limit_seconds"),
                defaults.log_rate_limit_seconds,
                minimum=0.1,
            ),
            overlay_title=_coerce_template(raw.get("overlay_title"), defaults.overlay_title, "overlay_title", label="X"),
            overlay_message=_coerce_template(
                raw.get("overlay_message"),
                defaults.overlay_message,
                "overlay_message",
                label="X",
                label_lower="x",
            ),
            overlay_countdown=_coerce_template(
                raw.get("overlay_countdown"),
                defaults.overlay_countdown,
                "overlay_countdown",
                seconds=1,
            ),
            overlay_cancel_text=_coerce_str(raw.get("overlay_cancel_text"), defaults.overlay_cancel_text),
        )

    def save(self, path: str = RULES_FILE) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, indent=2, ensure_ascii=False)

    @classmethod
    def default_json(cls) -> str:
        return json.dumps(asdict(cls()), indent=2, ensure_ascii=False)


def _ensure_from_template(dst: str, default_text: str) -> None:
    if os.path.exists(dst):
        return
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    src = os.path.join(resource_base_dir(), os.path.basename(dst))
    try:
        if os.path.exists(src):
            with open(src, "r", encoding="utf-8") as f:
                content = f.read()
        else:
            content = default_text
    except Exception:
        content = default_text
    with open(dst, "w", encoding="utf-8") as f:
        f.write(content)


def ensure_runtime_files() -> None:
    os.makedirs(APPDATA_DIR, exist_ok=True)
    _ensure_from_template(RULES_FILE, BlockRules.default_json())
    if not os.path.exists(LOG_FILE):
        with open(LOG_FILE, "a", encoding="utf-8"):
            pass


__all__ = [
    "VERSION",
    "APP_NAME",
    "APPDATA_DIRNAME",
    "APPDATA_DIR",
    "SETTINGS_FILE",
    "RULES_FILE",
    "LOG_FILE",
    "STORE_KEYS",
    "BlockSettings",
    "SettingsCache",
    "BlockRules",
    "load_json_object",
    "resource_base_dir",
    "get_app_data_dir",
    "ensure_runtime_files",
    "consume_load_warnings",
]
