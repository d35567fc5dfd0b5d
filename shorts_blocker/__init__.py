from __future__ import annotations

from importlib import import_module
from typing import Dict, Tuple

_MODULE_EXPORTS = {
    "app": "shorts_blocker.app",
}

_ATTR_EXPORTS: Dict[str, Tuple[str, str]] = {
    "main": ("shorts_blocker.app", "main"),
    "VERSION": ("shorts_blocker.config", "VERSION"),
    "APP_NAME": ("shorts_blocker.config", "APP_NAME"),
    "APPDATA_DIR": ("shorts_blocker.config", "APPDATA_DIR"),
    "SETTINGS_FILE": ("shorts_blocker.config", "SETTINGS_FILE"),
    "RULES_FILE": ("shorts_blocker.config", "RULES_FILE"),
    "LOG_FILE": ("shorts_blocker.config", "LOG_FILE"),
    "STORE_KEYS": ("shorts_blocker.config", "STORE_KEYS"),
    "BlockSettings": ("shorts_blocker.config", "BlockSettings"),
    "BlockRules": ("shorts_blocker.config", "BlockRules"),
    "SettingsCache": ("shorts_blocker.config", "SettingsCache"),
    "ensure_runtime_files": ("shorts_blocker.config", "ensure_runtime_files"),
    "consume_load_warnings": ("shorts_blocker.config", "consume_load_warnings"),
    "ClassificationPolicy": ("shorts_blocker.policy", "ClassificationPolicy"),
    "SignalType": ("shorts_blocker.policy", "SignalType"),
    "UrlBlock": ("shorts_blocker.policy", "UrlBlock"),
    "silence_media": ("shorts_blocker.media", "silence_media"),
    "Sweeper": ("shorts_blocker.sweeper", "Sweeper"),
    "SweepResult": ("shorts_blocker.sweeper", "SweepResult"),
    "CoalescingQueue": ("shorts_blocker.change_watcher", "CoalescingQueue"),
    "ChangeWatcher": ("shorts_blocker.change_watcher", "ChangeWatcher"),
    "NavigationWatcher": ("shorts_blocker.navigation", "NavigationWatcher"),
    "BlockOverlay": ("shorts_blocker.overlay", "BlockOverlay"),
    "OverlayState": ("shorts_blocker.overlay", "OverlayState"),
    "SettingsSyncBridge": ("shorts_blocker.sync", "SettingsSyncBridge"),
    "ShortsBlockerEngine": ("shorts_blocker.engine", "ShortsBlockerEngine"),
    "EngineState": ("shorts_blocker.engine", "EngineState"),
    "HostPage": ("shorts_blocker.host", "HostPage"),
    "SoupPage": ("shorts_blocker.host", "SoupPage"),
    "Scheduler": ("shorts_blocker.scheduler", "Scheduler"),
    "AsyncioScheduler": ("shorts_blocker.scheduler", "AsyncioScheduler"),
    "ManualScheduler": ("shorts_blocker.scheduler", "ManualScheduler"),
    "JsonSettingsStore": ("shorts_blocker.store", "JsonSettingsStore"),
    "MessageBus": ("shorts_blocker.messaging", "MessageBus"),
    "BackgroundService": ("shorts_blocker.messaging", "BackgroundService"),
    "setup_logging": ("shorts_blocker.logging_setup", "setup_logging"),
    "get_logger": ("shorts_blocker.logging_setup", "get_logger"),
}

__all__ = ["app", *_ATTR_EXPORTS]


def __getattr__(name: str):
    module_name = _MODULE_EXPORTS.get(name)
    if module_name is not None:
        module = import_module(module_name)
        globals()[name] = module
        return module

    target = _ATTR_EXPORTS.get(name)
    if target is not None:
        source_module_name, source_attr_name = target
        source_module = import_module(source_module_name)
        value = getattr(source_module, source_attr_name)
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(__all__))
