import logging
import os
from logging.config import dictConfig
from logging.handlers import RotatingFileHandler

from config import Settings, get_settings
from logs.async_logging import AsyncLoggingManager

LOG_FORMAT = '%(asctime)s %(name)-12s %(levelname)-8s [SESSION_ID: {session_id}] %(message)s'
LOG_MAX_BYTES = 1024 * 1024 * 5  # 5 MB
LOG_BACKUP_COUNT = 10


def configure_logging(session_id_run, settings: Settings = None, use_async=True):
    settings = settings or get_settings()
    log_level = logging.INFO if settings.PROD else logging.DEBUG
    log_format = LOG_FORMAT.format(session_id=session_id_run)

    if settings.PROD:
        log_dir = os.path.dirname(settings.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

    if use_async and settings.PROD:
        # Handlers run on the listener thread, loggers only enqueue
        formatter = logging.Formatter(log_format)

        stream_handler = logging.StreamHandler()
        file_handler = RotatingFileHandler(
            filename=settings.LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        for handler in (stream_handler, file_handler):
            handler.setFormatter(formatter)
            handler.setLevel(log_level)

        async_manager = AsyncLoggingManager()
        log_queue = async_manager.setup_async_logging([stream_handler, file_handler])

        LOGGING_CONFIG = dict(
            version=1,
            disable_existing_loggers=False,
            handlers={
                'queue': {
                    'class': 'logging.handlers.QueueHandler',
                    'queue': log_queue,
                },
            },
            root={
                'handlers': ['queue'],
                'level': log_level,
            },
        )
    else:
        handlers = ['h', 'file'] if settings.PROD else ['h']

        LOGGING_CONFIG = dict(
            version=1,
            disable_existing_loggers=False,
            formatters={
                'f': {
                    'format': log_format,
                },
            },
            handlers={
                'h': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'f',
                    'level': log_level,
                },
            },
            root={
                'handlers': handlers,
                'level': log_level,
            },
        )

        if settings.PROD:
            LOGGING_CONFIG['handlers']['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'filename': settings.LOG_FILE,
                'formatter': 'f',
                'level': log_level,
                'maxBytes': LOG_MAX_BYTES,
                'backupCount': LOG_BACKUP_COUNT,
            }

    dictConfig(LOGGING_CONFIG)
