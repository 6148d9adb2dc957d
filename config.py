import dotenv
import logging
import os
import sys

from pathlib import Path
from typing import Optional

from dnsservice import LoopOptions

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"


def load_env_file(env_file: str = DEFAULT_ENV_FILE) -> bool:
    """Adds the variables of ``env_file`` to the environment, without overriding."""
    if not os.path.isfile(env_file):
        return False
    return dotenv.load_dotenv(dotenv_path=env_file)


class Config:
    def __init__(self, env_file: str = DEFAULT_ENV_FILE):
        logger.info("Loading the application configuration from environment.")
        if load_env_file(env_file):
            logger.info(f"An {env_file} file was found.")

        # Mandatory environment variables
        self.api_url = os.environ.get("DYN_DNS_API_URL")
        self.hostname = os.environ.get("HOSTNAME")
        self.auth_key_file_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

        # Optional settings
        self.zone_name = os.environ.get("ZONE_NAME")
        self.zone_dns_name = os.environ.get("ZONE_DNS_NAME")
        self.pid_file_path = os.environ.get("PID_FILE_PATH", None)

        # Left as None when unset, the service refuses to start without it
        self.loop_options = self._load_loop_options()

        if self.api_url is None:
            logger.error("DYN_DNS_API_URL environment variable is missing.")
            sys.exit(1)

        if self.hostname is None:
            logger.error("HOSTNAME environment variable is missing.")
            sys.exit(1)

        if self.auth_key_file_path is None:
            logger.error(
                "GOOGLE_APPLICATION_CREDENTIALS environment variable is missing."
            )
            sys.exit(1)

        google_cred_path = Path(self.auth_key_file_path)
        if not google_cred_path.is_file():
            logger.error(
                f"Path to Google Cloud Credentials doesn't exist or is not readable: {self.auth_key_file_path}"
            )
            sys.exit(1)

    @staticmethod
    def _load_loop_options() -> Optional[LoopOptions]:
        raw = os.environ.get("CHECK_INTERVAL_MS")
        if raw is None or raw.strip() == "":
            logger.error("CHECK_INTERVAL_MS environment variable is missing.")
            return None

        try:
            check_interval_ms = int(raw)
        except ValueError:
            logger.error(f"CHECK_INTERVAL_MS must be an integer, got {raw!r}.")
            sys.exit(1)

        return LoopOptions(check_interval_ms=check_interval_ms)
