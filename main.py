import logging
import os
import signal
import sys
import threading

from config import Config, DEFAULT_ENV_FILE, load_env_file
from dnsservice import ConfigurationError, DnsService
from dnsupdater import DynDnsUpdater, GoogleAuthHelper
from logger import configure_logging
from publicip import MyPublicIP
from publicipsources import default_public_ip_sources

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)


def dyn_dns_updater(
    stop_event: threading.Event = None, env_file: str = DEFAULT_ENV_FILE
) -> int:
    app_config = Config(env_file=env_file)

    # Shared across cycles: source TTLs, backoff and the cached ID token
    public_ip = MyPublicIP(public_ip_sources=default_public_ip_sources())
    auth_helper = GoogleAuthHelper(dyn_dns_api_url=app_config.api_url)

    def create_updater() -> DynDnsUpdater:
        return DynDnsUpdater(
            zone_name=app_config.zone_name,
            zone_dns_name=app_config.zone_dns_name,
            dyn_dns_api_url=app_config.api_url,
            hostname=app_config.hostname,
            auth_helper=auth_helper,
        )

    try:
        service = DnsService(
            options=app_config.loop_options,
            resolver_factory=lambda: public_ip,
            updater_factory=create_updater,
        )
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if app_config.pid_file_path is not None:
        with open(app_config.pid_file_path, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))

    if stop_event is None:
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)

    service.run(stop_event)
    return 0


def run() -> None:
    # LOG_LEVEL may come from the .env file
    load_env_file()
    configure_logging()
    sys.exit(dyn_dns_updater())


if __name__ == "__main__":
    run()
