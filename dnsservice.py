import logging
import threading

from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum, auto
from ipaddress import IPv4Address, IPv6Address
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

IPAddress = Union[IPv4Address, IPv6Address]

MIN_CHECK_INTERVAL_MS = 1000


class ConfigurationError(Exception):
    pass


class IpResolver(ABC):
    @abstractmethod
    def get_current_ip_address(self) -> Optional[IPAddress]:
        pass


class DnsRecordUpdater(ABC):
    @abstractmethod
    def update_dns_record(self, ip: IPAddress) -> None:
        pass


@dataclass(frozen=True)
class LoopOptions:
    check_interval_ms: int


class CycleOutcome(Enum):
    RESOLUTION_FAILED = auto()
    NO_ADDRESS = auto()
    UNCHANGED = auto()
    CHANGED = auto()


class CycleEventKind(Enum):
    STARTED = auto()
    RESOLVING = auto()
    RESOLUTION_FAILED = auto()
    NO_ADDRESS = auto()
    UNCHANGED = auto()
    CHANGED = auto()
    UPDATED = auto()
    UPDATE_FAILED = auto()
    STOPPED = auto()


@dataclass(frozen=True)
class CycleEvent:
    kind: CycleEventKind
    ip: Optional[IPAddress] = None
    error: Optional[BaseException] = None


class CycleObserver(ABC):
    @abstractmethod
    def on_cycle_event(self, event: CycleEvent) -> None:
        pass


class LoggingCycleObserver(CycleObserver):
    """Reports cycle events through the standard logging module."""

    def __init__(self, check_interval_ms: int = None) -> None:
        super().__init__()
        self._check_interval_ms = check_interval_ms

    def on_cycle_event(self, event: CycleEvent) -> None:
        kind = event.kind
        if kind == CycleEventKind.STARTED:
            logger.info(
                f"Starting with {self._check_interval_ms}ms check interval",
                extra={"check_interval_ms": self._check_interval_ms},
            )
        elif kind == CycleEventKind.RESOLVING:
            logger.debug("Fetching current IP")
        elif kind == CycleEventKind.RESOLUTION_FAILED:
            logger.error(
                "Failed to resolve IP, skipping this cycle",
                exc_info=event.error,
                extra={"metric": "dyndns.resolve_error", "value": 1},
            )
        elif kind == CycleEventKind.NO_ADDRESS:
            logger.error(
                "IP resolver failed to return an IP, skipping this cycle",
                extra={"metric": "dyndns.no_address", "value": 1},
            )
        elif kind == CycleEventKind.UNCHANGED:
            logger.debug("Current IP has not changed", extra={"ip_change": 0})
        elif kind == CycleEventKind.CHANGED:
            logger.info(
                f"IP has changed to {event.ip}, updating",
                extra={"ip_change": 1, "ip": str(event.ip)},
            )
        elif kind == CycleEventKind.UPDATED:
            logger.info(
                f"Updated the DNS record with IP {event.ip}",
                extra={"metric": "dyndns.success", "value": 1},
            )
        elif kind == CycleEventKind.UPDATE_FAILED:
            logger.error(
                f"Failed to update IP {event.ip}",
                exc_info=event.error,
                extra={"metric": "dyndns.update_error", "value": 1},
            )
        elif kind == CycleEventKind.STOPPED:
            logger.info("Cancellation requested, stopping service")


class DnsService:
    """
    Keeps a DNS record in line with the current public IP.

    Each cycle asks a freshly created resolver for the current address and,
    when it differs from the last one seen, hands it to a freshly created
    updater. Cycles are separated by ``check_interval_ms`` and run until the
    stop event passed to ``run`` is set.

    The last known IP is recorded before the update is attempted and is not
    reverted when the update fails, so a failed update is only retried once
    the address changes again.
    """

    def __init__(
        self,
        options: Optional[LoopOptions],
        resolver_factory: Callable[[], IpResolver],
        updater_factory: Callable[[], DnsRecordUpdater],
        observer: CycleObserver = None,
    ) -> None:
        self._ensure_options_set(options)
        self._options = options
        self._resolver_factory = resolver_factory
        self._updater_factory = updater_factory
        self._last_known_ip: Optional[IPAddress] = None

        if observer is None:
            observer = LoggingCycleObserver(
                check_interval_ms=options.check_interval_ms
            )
        self._observer = observer

    @property
    def options(self) -> LoopOptions:
        return self._options

    @property
    def last_known_ip(self) -> Optional[IPAddress]:
        return self._last_known_ip

    def run(self, stop_event: threading.Event) -> None:
        self._emit(CycleEventKind.STARTED)
        interval_sec = self._options.check_interval_ms / 1000
        while not stop_event.is_set():
            self.run_cycle()
            # wait() returns True as soon as the event is set
            if stop_event.wait(timeout=interval_sec):
                break
        self._emit(CycleEventKind.STOPPED)

    def run_cycle(self) -> CycleOutcome:
        with ExitStack() as scope:
            try:
                resolver = self._acquire(self._resolver_factory, scope)
                updater = self._acquire(self._updater_factory, scope)
                self._emit(CycleEventKind.RESOLVING)
                ip = resolver.get_current_ip_address()
            except Exception as e:
                self._emit(CycleEventKind.RESOLUTION_FAILED, error=e)
                return CycleOutcome.RESOLUTION_FAILED

            if not ip:
                self._emit(CycleEventKind.NO_ADDRESS)
                return CycleOutcome.NO_ADDRESS

            if ip == self._last_known_ip:
                self._emit(CycleEventKind.UNCHANGED, ip=ip)
                return CycleOutcome.UNCHANGED

            self._last_known_ip = ip
            self._emit(CycleEventKind.CHANGED, ip=ip)
            try:
                updater.update_dns_record(ip)
            except Exception as e:
                self._emit(CycleEventKind.UPDATE_FAILED, ip=ip, error=e)
            else:
                self._emit(CycleEventKind.UPDATED, ip=ip)
            return CycleOutcome.CHANGED

    def _acquire(self, factory: Callable[[], object], scope: ExitStack):
        instance = factory()
        close = getattr(instance, "close", None)
        if callable(close):
            scope.callback(self._close_quietly, instance)
        return instance

    @staticmethod
    def _close_quietly(instance: object) -> None:
        try:
            instance.close()
        except Exception:
            logger.exception(f"Failed to release {type(instance).__name__}")

    def _emit(
        self,
        kind: CycleEventKind,
        ip: Optional[IPAddress] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        try:
            self._observer.on_cycle_event(CycleEvent(kind=kind, ip=ip, error=error))
        except Exception:
            logger.exception(f"Cycle observer failed while handling {kind.name}")

    @staticmethod
    def _ensure_options_set(options: Optional[LoopOptions]) -> None:
        if options is None:
            raise ConfigurationError("No options provided.")

        if options.check_interval_ms < MIN_CHECK_INTERVAL_MS:
            raise ConfigurationError(
                f"check_interval_ms must be >= {MIN_CHECK_INTERVAL_MS}."
            )
