from __future__ import annotations

import argparse
import logging
import sys

from nicegui import app as ng_app
from nicegui import ui

from iotcar import constants
from iotcar.common.logging_config import TRACE, configure_logging
from iotcar.common.theme import apply_theme, get_theme, inject_layout_css
from iotcar.config import ControllerConfig
from iotcar.controller import CarController
from iotcar.pages.drive import DrivePage
from iotcar.pages.settings import SettingsPage
from iotcar.services.events import LoggingNotifier
from iotcar.state import panel_state


def create_app(config: ControllerConfig, default_address: str = "") -> CarController:
    """Wire the controller into NiceGUI: lifecycle hooks and the pages."""
    controller = CarController(config=config)
    panel_state.address = default_address

    async def _startup() -> None:
        controller.events.subscribe(LoggingNotifier())
        controller.events.start()

    async def _shutdown() -> None:
        await controller.shutdown()

    ng_app.on_startup(_startup)
    ng_app.on_shutdown(_shutdown)

    @ui.page("/")
    def index() -> None:
        apply_theme(get_theme())
        inject_layout_css()
        drive = DrivePage(controller)
        settings = SettingsPage(config)

        with ui.tabs().classes("w-full") as tabs:
            drive_tab = ui.tab("Drive")
            settings_tab = ui.tab("Settings")
        with ui.tab_panels(tabs, value=drive_tab).classes("w-full"):
            with ui.tab_panel(drive_tab):
                drive.build()
            with ui.tab_panel(settings_tab):
                settings.build()

        controller.events.subscribe(drive.on_event)
        ui.context.client.on_disconnect(lambda: controller.events.unsubscribe(drive.on_event))

    return controller


def _resolve_log_level(args: argparse.Namespace) -> int:
    # Priority: explicit --log-level > -v/-q > env default
    if args.log_level:
        return TRACE if args.log_level == "TRACE" else getattr(logging, args.log_level)
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    return constants.LOG_LEVEL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IoT Car Controller webserver")
    parser.add_argument("--host", default=constants.SERVER_HOST, help="Webserver bind host")
    parser.add_argument("--port", type=int, default=constants.SERVER_PORT, help="Webserver bind port")
    parser.add_argument(
        "--device", default=constants.DEVICE_ADDRESS, help="Device address to prefill"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=constants.TICK_INTERVAL_S,
        help="Seconds between repeated commands while a control is held",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=constants.REQUEST_TIMEOUT_S,
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "--max-failures",
        type=int,
        default=constants.MAX_CONSECUTIVE_FAILURES,
        help="Disconnect after this many consecutive failed commands (0 = never)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set log level",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase verbosity; -v=INFO, -vv=DEBUG"
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(_resolve_log_level(args))

    config = ControllerConfig(
        tick_interval_s=args.interval,
        request_timeout_s=args.timeout,
        max_consecutive_failures=args.max_failures,
    )
    create_app(config, default_address=args.device)
    logging.info("Webserver bind: host=%s port=%s", args.host, args.port)

    ui.run(
        title="IoT Car Controller",
        host=args.host,
        port=args.port,
        reload=False,
        show=False,
        loop="uvloop" if sys.platform != "win32" else "asyncio",
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()
