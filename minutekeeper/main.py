"""Main application entry point for MinuteKeeper."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from .config import MinuteKeeperConfig
from .errors import MinuteKeeperError
from .minutes import ChatCompletionEngine, GenerationRegistry
from .models import MeetingMinutes
from .services import LiveMeetingService
from .storage import FileManager, JsonMeetingStore
from .transcription import OpenAIRealtimeClient
from .transcription.realtime_client import REALTIME_MODEL
from .ui import ProgressDisplay

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = MinuteKeeperConfig(config_path)
        # Set up logging (command line overrides config)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))

    def init(self):
        logger.info("Initializing services...")

        self.file_manager = FileManager(self.config.get_data_directory())
        self.store = JsonMeetingStore(str(self.file_manager.meetings_dir))

        api_key = self.config.get_openai_api_key()
        base_url = self.config.get('openai.base_url', 'https://api.openai.com/v1')
        self.realtime_client = OpenAIRealtimeClient(
            api_key,
            model=self.config.get('openai.realtime_model', REALTIME_MODEL),
            transcription_model=self.config.get('openai.transcription_model', 'whisper-1'),
            base_url=base_url,
        )
        self.engine = ChatCompletionEngine(
            api_key, model=self.config.get('openai.summary_model', 'gpt-4o-mini'), base_url=base_url)

        self.registry = GenerationRegistry(
            self.store,
            completion_delay=self.config.get('minutes.completion_display_seconds', 3),
            failure_delay=self.config.get('minutes.failure_display_seconds', 5),
        )
        self.display = ProgressDisplay()
        self.registry.add_observer(self.display)

        self.service = LiveMeetingService(
            self.config, self.store, self.file_manager, self.realtime_client, self.engine,
            registry=self.registry, on_error=self._on_error)

        settings = self.config.minute_generation_settings()
        logger.info(f"Chunk duration: {settings.chunk_duration_minutes} min, "
                    f"auto-generate: {settings.auto_generate_enabled}")

    def _on_error(self, error: Exception) -> None:
        self.display.console.print(f"⚠️  {error}", style="yellow")

    async def run(self, meeting_id: str, duration: int, title: Optional[str] = None) -> None:
        meeting_id = await self.service.start(meeting_id, title=title)
        self.display.console.print(f"🔴 Recording meeting {meeting_id} for {duration}s", style="bold red")
        try:
            await asyncio.sleep(duration)
        finally:
            artifact = await self.service.stop()

        if artifact is not None:
            self.display.console.print(
                f"⏹️  Saved {artifact.duration_seconds:.1f}s of audio to {artifact.file_path}", style="green")
        chapters = self.store.recent_chapters(meeting_id, limit=100)
        for chapter in reversed(chapters):
            self.display.console.print(f"  📍 {chapter.timestamp:>6.0f}s  {chapter.title}")

        if self.service.generation_task is not None:
            with self.display:
                await self.service.generation_task

    async def generate(self, meeting_id: str) -> MeetingMinutes:
        with self.display:
            minutes = await self.service.generate_minutes(meeting_id)
        self.display.console.print(minutes.content)
        return minutes

    async def cleanup(self) -> None:
        self.registry.close()
        self.store.close()
        await self.realtime_client.close()


def setup_logging(config: MinuteKeeperConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/minutekeeper.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
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

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("MinuteKeeper starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


async def _main(args: argparse.Namespace) -> None:
    server = Server(args.config, args.log_level)
    server.init()
    try:
        if args.generate:
            await server.generate(args.generate)
        else:
            await server.run(args.meeting_id, args.duration, title=args.title)
    finally:
        await server.cleanup()


def main() -> None:
    """Main entry point for MinuteKeeper."""
    parser = argparse.ArgumentParser(
        description="MinuteKeeper - live meeting capture with incremental minutes",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--meeting-id",
        type=str,
        default="meeting",
        help="Meeting identifier; non-UUID values are mapped to a stable UUID"
    )

    parser.add_argument(
        "--title",
        type=str,
        help="Meeting title used as summarization context"
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Recording duration in seconds (default: 60)"
    )

    parser.add_argument(
        "--generate",
        metavar="MEETING_ID",
        type=str,
        help="Only generate minutes for an already recorded meeting"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="MinuteKeeper v0.1.0"
    )

    args = parser.parse_args()

    try:
        asyncio.run(_main(args))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except (MinuteKeeperError, ValueError, FileNotFoundError) as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
