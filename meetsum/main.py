"""Main application entry point for Meetsum."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

from .config import MeetsumConfig
from .models.session import SessionStatus
from .services.pipeline_controller import PipelineController
from .ui.status_screen import StatusScreen

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "meetsum.yaml"


class Server:

    def __init__(self, config_path: str, log_level: str = None):
        self.config = MeetsumConfig(config_path)
        # Command line overrides config
        if log_level:
            self.config.set('logging.level', log_level)
        setup_logging(self.config, self.config.get('logging.level', 'INFO'))
        self.screen = StatusScreen()
        self.controller = None

    def init(self):
        logger.info("Initializing services...")
        self.controller = PipelineController.from_config(self.config)
        self.screen.attach()

    async def record(self, duration: int) -> SessionStatus:
        if await self.controller.start():
            await asyncio.sleep(duration)
            await self.controller.stop()
        return await self._finish()

    async def ingest(self, path: str) -> SessionStatus:
        if not await self.controller.ingest_external_file(path):
            logger.error(f"Could not ingest {path} in state {self.controller.state.status.value}")
            return SessionStatus.FAILED
        return await self._finish()

    async def _finish(self) -> SessionStatus:
        try:
            await self.controller.join()
        finally:
            await self.controller.shutdown()
        return self.controller.state.status

    def cleanup(self):
        self.screen.detach()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'logs/meetsum.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Progress goes through the status screen
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("Meetsum starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Meetsum - record a meeting, transcribe it and get a summary link",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG,
        help=f"Path to configuration YAML file (default: {DEFAULT_CONFIG})"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="Meetsum v0.1.0"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Record from the microphone, then summarize")
    record.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Recording length in seconds (default: 60)"
    )

    ingest = commands.add_parser("ingest", help="Summarize an existing audio file")
    ingest.add_argument("path", type=str, help="Audio file to transcribe")
    return parser


def main() -> None:
    """Main entry point for Meetsum."""
    args = build_parser().parse_args()

    try:
        server = Server(args.config, args.log_level)
        server.init()
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    try:
        if args.command == "record":
            status = asyncio.run(server.record(args.duration))
        else:
            status = asyncio.run(server.ingest(args.path))
    except KeyboardInterrupt:
        print("\n👋 Cancelled")
        sys.exit(130)
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        server.cleanup()

    sys.exit(1 if status is SessionStatus.FAILED else 0)


if __name__ == "__main__":
    main()
