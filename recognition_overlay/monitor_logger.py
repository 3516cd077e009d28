from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


class LoggerConfig:
    """
    Configures the application's root package logger with console and
    rotating file output.
    """

    def __init__(
        self,
        log_file: str = 'recognition_overlay.log',
        log_dir: str = 'logs',
        level: int = logging.INFO,
        formatter: logging.Formatter | None = None,
        name: str = 'recognition_overlay',
    ) -> None:
        """
        Initialise the logger configuration.

        Args:
            log_file (str): Log file name.
            log_dir (str): Directory the log file is written to; created on
                demand.
            level (int): Logging level for the logger and both handlers.
            formatter (logging.Formatter | None): Formatter shared by both
                handlers. Defaults to timestamp, name, level and message.
            name (str): Logger to configure. Module loggers created with
                ``logging.getLogger(__name__)`` inside the package propagate
                to it.
        """
        self.log_file = log_file
        self.log_dir = log_dir
        self.level = level
        self.formatter = formatter or logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        )
        self.logger = logging.getLogger(name)
        self.setup_logger()

    def setup_logger(self) -> None:
        """
        Attach the handlers once; repeated construction is a no-op.
        """
        if self.logger.handlers:
            return

        Path(self.log_dir).mkdir(parents=True, exist_ok=True)

        self.logger.addHandler(self.get_file_handler())
        self.logger.addHandler(self.get_console_handler())
        self.logger.setLevel(self.level)

        # Request logs from httpx are per frame; keep them out of the console
        logging.getLogger('httpx').setLevel(logging.WARNING)

        self.logger.debug('Logger handlers set up complete.')

    def get_file_handler(self) -> logging.Handler:
        """
        Creates and returns a rotating file handler.

        Returns:
            logging.Handler: A configured rotating file handler.
        """
        file_handler = RotatingFileHandler(
            filename=Path(self.log_dir) / self.log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding='utf-8',
        )
        file_handler.setLevel(self.level)
        file_handler.setFormatter(self.formatter)
        return file_handler

    def get_console_handler(self) -> logging.Handler:
        """
        Creates and returns a console handler.

        Returns:
            logging.Handler: A configured console handler.
        """
        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.level)
        console_handler.setFormatter(self.formatter)
        return console_handler

    def get_logger(self) -> logging.Logger:
        return self.logger
