"""Application bootstrap for the Jarvis visual chat client."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, cast, get_args, get_origin, get_type_hints

import setproctitle

from .ai.client import ClientSettings, GatewayClient
from .ai.orchestration import ToolStreamRunner, TurnOrchestrator
from .ai.tools.visual import VisualToolkit
from .services.settings import SessionSettings, Settings, SettingsStore, StealthSettings, redact_secret
from .session.history import ConversationHistory
from .ui.chat_controller import ChatController
from .ui.events import EventBus, StreamChunk, ToolCallStarted, ToolResultReady
from .ui.hotkeys import GlobalHotkeys
from .ui.position_registry import PositionRegistry
from .ui.window_manager import OVERLAY, VISUAL_CHAT, WindowManager
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_NESTED_SETTINGS: Mapping[str, type] = {"session": SessionSettings, "stealth": StealthSettings}
_ENV_PREFIXES = ("JARVIS_", "OPENROUTER_")
_ENV_NAMES = {"IMAGE_MODEL", "SITE_URL", "PROCESS_TITLE", "STEALTH_MODE"}
_HEADLESS_PREVIEW_CHARS = 80


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


@dataclass(slots=True)
class JarvisServices:
    """Explicitly constructed collaborators shared by the UI and the CLI."""

    settings: Settings
    bus: EventBus
    history: ConversationHistory
    client: GatewayClient
    toolkit: VisualToolkit
    orchestrator: TurnOrchestrator
    controller: ChatController
    registry: PositionRegistry

    async def aclose(self) -> None:
        self.controller.cancel_turn()
        await self.client.aclose()


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_services(settings: Settings, *, debug_logging: bool = False) -> JarvisServices:
    """Wire the gateway client, tools, history and orchestrator together."""

    client = GatewayClient(ClientSettings.from_settings(settings, debug_logging=debug_logging))
    toolkit = VisualToolkit(client, image_timeout=settings.image_timeout)
    runner = ToolStreamRunner(
        client,
        toolkit,
        max_steps=settings.max_tool_steps,
        temperature=settings.temperature,
    )
    bus: EventBus = EventBus()
    history = ConversationHistory.from_settings(settings)
    orchestrator = TurnOrchestrator(client=client, toolkit=toolkit, runner=runner, history=history, bus=bus)
    controller = ChatController(orchestrator=orchestrator, client=client, toolkit=toolkit, history=history, bus=bus)
    registry = PositionRegistry()
    registry.attach(bus)
    return JarvisServices(
        settings=settings,
        bus=bus,
        history=history,
        client=client,
        toolkit=toolkit,
        orchestrator=orchestrator,
        controller=controller,
        registry=registry,
    )


def create_qapp(settings: Settings) -> QtRuntime:
    """Create a qasync-powered QApplication, disguised when stealth is on."""

    try:  # Local import keeps the headless --ask path free of Qt.
        from PySide6.QtWidgets import QApplication
    except ImportError as exc:  # pragma: no cover - depends on desktop stack
        raise RuntimeError("PySide6 must be installed to launch the Jarvis UI.") from exc

    try:
        from qasync import QEventLoop
    except ImportError as exc:  # pragma: no cover - depends on env setup
        raise RuntimeError("qasync is required to run the async Qt event loop.") from exc

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    name = application_name(settings)
    app.setApplicationName(name)
    app.setApplicationDisplayName(name)
    app.setQuitOnLastWindowClosed(True)
    _install_qt_message_handler()

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    return QtRuntime(app=app, loop=loop)


def application_name(settings: Settings) -> str:
    if settings.stealth.enabled and settings.stealth.process_title:
        return settings.stealth.process_title
    return settings.app_title


def apply_process_title(settings: Settings) -> bool:
    """Rename the OS process to the disguise title when stealth is on."""

    if not (settings.stealth.enabled and settings.stealth.process_title):
        return False
    setproctitle.setproctitle(settings.stealth.process_title)
    _LOGGER.info("Process title set for stealth mode")
    return True


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `jarvis` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)

    debug = _env_flag("JARVIS_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings or os.environ.get("JARVIS_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if args.save_settings:
        _save_settings(settings_store, cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True
    logging_utils.register_secret(settings.api_key)
    apply_process_title(settings)

    if args.ask is not None:
        raise SystemExit(asyncio.run(_run_headless(settings, args.ask, debug_logging=debug)))

    _run_desktop(settings, debug_logging=debug)


def _run_desktop(settings: Settings, *, debug_logging: bool) -> None:
    runtime = create_qapp(settings)
    services = build_services(settings, debug_logging=debug_logging)

    from .ui.overlay_window import OverlayWindow, VisualChatWindow

    title = application_name(settings)
    manager = WindowManager(services.bus, click_through_enabled=settings.stealth.click_through)
    overlay = OverlayWindow(services.registry, services.bus, title=title)
    screen = runtime.app.primaryScreen()
    if screen is not None:
        overlay.setGeometry(screen.availableGeometry())
    chat_window = VisualChatWindow(
        services.controller,
        services.registry,
        services.bus,
        title=title,
        width=settings.window_width,
        height=settings.window_height,
    )
    manager.register(OVERLAY, overlay)
    manager.register(VISUAL_CHAT, chat_window)
    bindings = {
        "Ctrl+Shift+V": manager.toggle_visibility,
        "Ctrl+Shift+I": manager.toggle_interaction,
        "Alt+A": manager.toggle_interaction,
        "Ctrl+Shift+C": manager.show_visual_chat,
    }
    hotkeys = GlobalHotkeys(bindings, loop=runtime.loop)
    if not hotkeys.start():
        # Without a global hook the shortcuts only fire while the chat window has focus.
        chat_window.install_shortcuts(bindings)
    overlay.hide()
    manager.show_visual_chat()
    services.history.add_event("Application started")
    _LOGGER.info("Jarvis started (model=%s, stealth=%s)", settings.model, settings.stealth.enabled)

    loop = runtime.loop
    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        hotkeys.stop()
        manager.destroy_all()
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(_shutdown_services(services))
        _drain_event_loop(loop)
        loop.close()
        _LOGGER.info("Application shutting down")


async def _run_headless(
    settings: Settings,
    question: str,
    *,
    debug_logging: bool = False,
    stream: TextIO | None = None,
) -> int:
    """Run one turn without Qt, echoing streamed text and tool results."""

    destination = stream or sys.stdout
    services = build_services(settings, debug_logging=debug_logging)
    printer = _ConsolePrinter(destination)
    services.history.add_event("Headless session started")
    printer.attach(services.bus)
    try:
        result = await services.controller.run_turn(question)
    finally:
        await _shutdown_services(services)
    destination.write("\n")
    if not result.get("success"):
        print(f"Error: {result.get('error')}", file=sys.stderr)
        return 1
    return 0


class _ConsolePrinter:
    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(StreamChunk, self.on_chunk)
        bus.subscribe(ToolCallStarted, self.on_tool_call)
        bus.subscribe(ToolResultReady, self.on_tool_result)

    def on_chunk(self, event: StreamChunk) -> None:
        self._stream.write(event.chunk)
        self._stream.flush()

    def on_tool_call(self, event: ToolCallStarted) -> None:
        marker = " (corrective)" if event.corrective else ""
        self._stream.write(f"\n[{event.tool_name}{marker}]\n")

    def on_tool_result(self, event: ToolResultReady) -> None:
        payload = dict(event.result)
        content = payload.get("content")
        if payload.get("type") == "image" and isinstance(content, str) and len(content) > _HEADLESS_PREVIEW_CHARS:
            payload["content"] = f"{content[:_HEADLESS_PREVIEW_CHARS]}..."
        json.dump(payload, self._stream, indent=2)
        self._stream.write("\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks(loop) if not task.done() and task is not current_task]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_asyncgens()
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_default_executor()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover - loop already stopped
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


async def _shutdown_services(services: JarvisServices) -> None:
    """Cancel any running turn and release network resources."""

    try:
        await services.aclose()
    except (OSError, RuntimeError) as exc:  # pragma: no cover - best effort at exit
        _LOGGER.debug("Service shutdown failed: %s", exc)


def _install_qt_message_handler() -> None:
    """Redirect Qt warnings to the Python logging stack."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        logging.getLogger("PySide6").log(level_map.get(mode, logging.INFO), message)

    qInstallMessageHandler(_handler)


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="jarvis",
        add_help=True,
        description="Launch the Jarvis visual chat overlay, or ask a single question from the terminal.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Persist the settings file merged with --set overrides (API key encrypted) and exit.",
    )
    parser.add_argument(
        "--settings",
        metavar="PATH",
        help="Override the default ~/.jarvis/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable, e.g. session.max_history_items=20).",
    )
    parser.add_argument(
        "--ask",
        metavar="TEXT",
        help="Run one turn headlessly, print the streamed text and tool results, then exit.",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "jarvis"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        owner, field_name = _resolve_override_target(key)
        annotation = get_type_hints(owner)[field_name]
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _resolve_override_target(key: str) -> tuple[type, str]:
    group, _, name = key.partition(".")
    if name:
        owner = _NESTED_SETTINGS.get(group)
        if owner is None:
            raise ValueError(f"Unknown settings group '{group}'.")
    else:
        owner, name = Settings, key
        if name in _NESTED_SETTINGS:
            raise ValueError(f"Set '{name}' fields individually, e.g. {name}.<field>=VALUE.")
    if name not in {item.name for item in fields(owner)}:
        raise ValueError(f"Unknown setting '{key}'.")
    return owner, name


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    optional = type(None) in get_args(annotation)
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if optional and normalized.lower() in {"none", "null", ""}:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target):
        raise ValueError("Nested settings must be set field by field.")
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _save_settings(store: SettingsStore, overrides: Mapping[str, Any], *, stream: TextIO | None = None) -> Path:
    """Write the persisted settings plus CLI overrides, leaving the environment out."""

    persisted = store.load(overrides=overrides or None, apply_env=False)
    path = store.save(persisted)
    destination = stream or sys.stdout
    destination.write(f"Settings saved to {path}\n")
    _LOGGER.info("Settings saved to %s (overrides=%s)", path, sorted(overrides))
    return path


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": "fernet",
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES)


__all__ = [
    "JarvisServices",
    "QtRuntime",
    "application_name",
    "build_services",
    "configure_logging",
    "create_qapp",
    "load_settings",
    "main",
]
