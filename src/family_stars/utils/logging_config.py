"""
Centralized logging configuration for Family Stars.
Provides component-specific loggers with separate log files.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime

from ..config import get_config


DETAILED_FORMAT = (
    '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s'
)


class ComponentLogger:
    """Manages component-specific logging with separate files."""

    _loggers: Dict[str, logging.Logger] = {}
    _initialized = False
    _log_dir: Optional[Path] = None
    _unified_handler: Optional[logging.Handler] = None

    # Component definitions with their log levels
    COMPONENTS = {
        'ledger': {'level': logging.INFO, 'file': 'ledger.log'},
        'badges': {'level': logging.INFO, 'file': 'badges.log'},
        'goals': {'level': logging.INFO, 'file': 'goals.log'},
        'celebrations': {'level': logging.INFO, 'file': 'celebrations.log'},
        'session': {'level': logging.INFO, 'file': 'session.log'},
        'events': {'level': logging.INFO, 'file': 'events.log'},
        'database': {'level': logging.INFO, 'file': 'database.log'},
        'api': {'level': logging.INFO, 'file': 'api.log'},
        'websocket': {'level': logging.INFO, 'file': 'websocket.log'},
        'main': {'level': logging.INFO, 'file': 'main.log'},
        'error': {'level': logging.ERROR, 'file': 'errors.log'},  # Centralized error log
    }

    @classmethod
    def initialize(cls, log_dir: Optional[str] = None, debug: Optional[bool] = None) -> None:
        """
        Initialize the logging system with component-specific loggers.

        Args:
            log_dir: Directory for log files. Defaults to config.app.log_dir
            debug: Enable debug logging for all components. Defaults to config.server.debug
        """
        if cls._initialized:
            return

        config = get_config()
        if debug is None:
            debug = config.server.debug

        detailed_formatter = logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )

        to_file = config.app.log_to_file
        if to_file:
            base_dir = Path(log_dir) if log_dir else Path(config.app.log_dir)
            # Session-specific subdirectory
            session_dir = datetime.now().strftime("%Y%m%d_%H%M%S")
            cls._log_dir = base_dir / session_dir
            cls._log_dir.mkdir(parents=True, exist_ok=True)

            cls._unified_handler = logging.handlers.RotatingFileHandler(
                cls._log_dir / 'unified.log',
                maxBytes=20 * 1024 * 1024,  # 20MB
                backupCount=3,
                encoding='utf-8'
            )
            cls._unified_handler.setLevel(logging.DEBUG if debug else logging.INFO)
            cls._unified_handler.setFormatter(detailed_formatter)

        for component_name, component_config in cls.COMPONENTS.items():
            level = logging.DEBUG if debug else component_config['level']
            cls._loggers[component_name] = cls._build_logger(
                component_name,
                level,
                component_config['file'],
                detailed_formatter,
                simple_formatter,
                console=component_name in ('error', 'main') or not to_file,
            )

        cls._initialized = True

        main_logger = cls._loggers['main']
        main_logger.info("Family Stars logging initialized (debug=%s, log_dir=%s)", debug, cls._log_dir)

    @classmethod
    def _build_logger(
        cls,
        component: str,
        level: int,
        file_name: str,
        detailed_formatter: logging.Formatter,
        simple_formatter: logging.Formatter,
        console: bool,
    ) -> logging.Logger:
        logger = logging.getLogger(f"family_stars.{component}")
        logger.handlers.clear()
        logger.propagate = False
        logger.setLevel(level)

        if cls._log_dir is not None:
            file_handler = logging.handlers.RotatingFileHandler(
                cls._log_dir / file_name,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(detailed_formatter)
            logger.addHandler(file_handler)
            if cls._unified_handler is not None:
                logger.addHandler(cls._unified_handler)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            # With file logging only errors reach the console
            console_handler.setLevel(logging.ERROR if cls._log_dir is not None else level)
            console_handler.setFormatter(simple_formatter)
            logger.addHandler(console_handler)

        return logger

    @classmethod
    def get_logger(cls, component: str) -> logging.Logger:
        """
        Get a logger for a specific component.

        Args:
            component: Component name (ledger, badges, goals, api, ...)
                      or a module path like 'family_stars.services.ledger'

        Returns:
            Logger instance for the component
        """
        if not cls._initialized:
            cls.initialize()

        if component.startswith('family_stars.'):
            parts = component.split('.')
            component = parts[-1] if parts[-1] in cls.COMPONENTS else parts[1]

        if component not in cls._loggers:
            config = get_config()
            level = logging.DEBUG if config.server.debug else logging.INFO
            cls._loggers[component] = cls._build_logger(
                component,
                level,
                f'{component}.log',
                logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'),
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S'),
                console=cls._log_dir is None,
            )

        return cls._loggers[component]

    @classmethod
    def log_exception(cls, component: str, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Log an exception with context to both component and error logs.

        Args:
            component: Component where the exception occurred
            exc: The exception to log
            context: Additional context information
        """
        component_logger = cls.get_logger(component)
        error_logger = cls.get_logger('error')

        context_str = ""
        if context:
            context_str = " | Context: " + ", ".join(f"{k}={v}" for k, v in context.items())

        exc_info = (type(exc), exc, exc.__traceback__)
        component_logger.error(f"Exception in {component}: {type(exc).__name__}: {exc}{context_str}", exc_info=exc_info)
        if error_logger is not component_logger:
            error_logger.error(f"[{component}] {type(exc).__name__}: {exc}{context_str}", exc_info=exc_info)

    @classmethod
    def get_log_directory(cls) -> Optional[Path]:
        """Get the current log directory path."""
        return cls._log_dir


# Convenience functions
def get_logger(component: str) -> logging.Logger:
    """Get a logger for a specific component."""
    return ComponentLogger.get_logger(component)


def initialize_logging(log_dir: Optional[str] = None, debug: Optional[bool] = None) -> None:
    """Initialize the logging system."""
    ComponentLogger.initialize(log_dir=log_dir, debug=debug)


def log_exception(component: str, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception with context."""
    ComponentLogger.log_exception(component, exc, context)


def get_log_directory() -> Optional[Path]:
    """Get the current log directory path."""
    return ComponentLogger.get_log_directory()
