import logging
import pathlib

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
INSTANCE_LOG_FILENAME = 'qmlauncher.log'


def setup(verbose: bool = False) -> None:
    """Configures root logging for the script entry point."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def instance_logger(instance_dir: pathlib.Path, name: str = 'qmlauncher.session') -> logging.Logger:
    """
    Returns a logger that also writes to ``<instance>/logs/qmlauncher.log``.

    The logger is handed to prepare, sync and launch. Calling this twice
    for the same directory does not attach a second file handler.
    """
    logs_dir = instance_dir / 'logs'
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = (logs_dir / INSTANCE_LOG_FILENAME).resolve()

    logger = logging.getLogger(f"{name}.{instance_dir.name}")
    logger.setLevel(logging.DEBUG)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and pathlib.Path(handler.baseFilename) == log_path:
            return logger

    handler = logging.FileHandler(log_path, encoding='utf-8')
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def close_instance_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logger.removeHandler(handler)
