import copy
import logging.config
import os
import sys
import yaml

DEFAULT_LOGGING_CONFIG_PATH = "logging.yaml"

default_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "root": {
        "level": "INFO",
        "handlers": ["consoleHandler"],
    },
    "handlers": {
        "consoleHandler": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            # JsonFormatter needs both {level} and {levelname} in the format string,
            # the rename below makes the field appear only once
            "format": "%(timestamp)s %(level)s %(levelname)s %(app)s %(name)s %(threadName)s %(funcName)s %(message)s",
            "timestamp": True,
            "static_fields": {"app": "dyn-dns-updater"},
            "rename_fields": {"levelname": "level"},
        }
    },
}


def _default_config() -> dict:
    config = copy.deepcopy(default_config)
    config["root"]["level"] = os.environ.get("LOG_LEVEL", "INFO")
    return config


def configure_logging(config_path: str = DEFAULT_LOGGING_CONFIG_PATH) -> bool:
    """
    Configures logging from a YAML dictConfig file, or the JSON default.

    The default root level is taken from LOG_LEVEL when this is called, so a
    .env file loaded beforehand is honoured. Returns True when the file at
    ``config_path`` was used.
    """
    if not os.path.isfile(config_path):
        logging.config.dictConfig(config=_default_config())
        return False

    try:
        print(f"Loading logging configuration from {config_path}.")
        with open(config_path, "r") as stream:
            logging.config.dictConfig(yaml.safe_load(stream))
        return True
    except Exception as exc:
        print(f"{exc}", file=sys.stderr)
        print("#" * 88, file=sys.stderr)
        print(
            "WARNING: Failed to load logging configuration file. Will use default logging parameters.",
            file=sys.stderr,
        )
        print("#" * 88, file=sys.stderr)
        logging.config.dictConfig(config=_default_config())
        return False
