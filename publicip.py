import datetime
import logging
import random
import time

import dns.exception
import dns.resolver
import requests

from abc import ABC, abstractmethod
from ipaddress import ip_address, IPv4Address
from typing import Callable, List, Optional

from dnsservice import IpResolver

logger = logging.getLogger(__name__)

DEFAULT_MAX_INACTIVE_SECS = datetime.timedelta(days=30).total_seconds()


class IpSourceError(Exception):
    pass


class IpSource(ABC):
    """
    A single place the public IP can be asked for.

    A source is polled at most once per ``ttl_sec``. Failures are counted and
    a source that has not answered successfully for ``max_inactive_secs`` is
    disabled for the rest of the process lifetime.
    """

    def __init__(
        self,
        name: str,
        ttl_sec: int,
        max_inactive_secs: float = DEFAULT_MAX_INACTIVE_SECS,
    ) -> None:
        self._enabled = True
        self._name = name
        self._ttl_sec = ttl_sec
        self._max_inactive_secs = max_inactive_secs
        self._last_poll_timestamp = None
        self._next_poll_timestamp = 0
        self._last_successful_poll = None
        self._consecutive_error_count = 0
        self._epoch_timestamp = time.time()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def ttl_sec(self) -> int:
        return self._ttl_sec

    @property
    def last_poll_timestamp(self) -> Optional[float]:
        return self._last_poll_timestamp

    @property
    def next_poll_timestamp(self) -> float:
        return self._next_poll_timestamp

    @property
    def last_successful_poll_timestamp(self) -> Optional[float]:
        return self._last_successful_poll

    @property
    def consecutive_error_count(self) -> int:
        return self._consecutive_error_count

    def is_ready(self, now: float) -> bool:
        return self._enabled and self._next_poll_timestamp <= now

    def get_my_public_ip(self) -> Optional[IPv4Address]:
        now = time.time()

        if not self._enabled:
            logger.error(f"Tried to poll the disabled public IP source {self._name}")
            return None

        if now < self._next_poll_timestamp:
            logger.error(
                f"Tried to poll the public IP source {self._name} before its TTL expired"
            )
            return None

        self._last_poll_timestamp = now
        self._next_poll_timestamp = now + self._ttl_sec

        try:
            ip_address_str = self._query(now)
        except IpSourceError as e:
            logger.warning(f"Public IP source {self._name} failed: {e}")
            return self._failed(now)

        try:
            ip = ip_address((ip_address_str or "").strip())
            if type(ip) is not IPv4Address or not ip.is_global:
                raise ValueError(f"{ip} is not a global IPv4 address")
        except ValueError:
            logger.exception(
                f"The IP address obtained from {self._name} is not a valid public IPv4 address: {ip_address_str!r}"
            )
            return self._failed(now)

        self._last_successful_poll = now
        self._consecutive_error_count = 0
        logger.info(
            f"Obtained IP address {ip} from {self._name}",
            extra={"ip_address": ip.exploded, "source": self._name},
        )
        return ip

    @abstractmethod
    def _query(self, now: float) -> Optional[str]:
        """Return the raw address text, or raise IpSourceError."""

    def _failed(self, now: float) -> None:
        self._consecutive_error_count += 1
        start_time = self._last_successful_poll or self._epoch_timestamp
        if (now - start_time) > self._max_inactive_secs:
            logger.error(
                f"Disabling public IP source {self._name}. Last successful call was on {self._last_successful_poll}"
            )
            self._enabled = False
        return None


class PublicIpSource(IpSource):
    """A plain HTTP "what is my IP" API."""

    _backoff_factor = 1.5

    def __init__(
        self,
        name: str,
        api_url: str,
        ttl_sec: int,
        get_ip_routine: Callable[[str], Optional[str]] = lambda payload: payload.strip(),
        max_inactive_secs: float = DEFAULT_MAX_INACTIVE_SECS,
        timeout_sec: float = 5,
    ) -> None:
        super().__init__(
            name=name, ttl_sec=ttl_sec, max_inactive_secs=max_inactive_secs
        )
        self._api_url = api_url
        self._get_ip_routine = get_ip_routine
        self._timeout_sec = timeout_sec
        self._consecutive_http_error_count = 0
        self._consecutive_http_429_count = 0

    @property
    def api_url(self) -> str:
        return self._api_url

    @property
    def consecutive_http_error_count(self) -> int:
        return self._consecutive_http_error_count

    @property
    def consecutive_http_429_count(self) -> int:
        return self._consecutive_http_429_count

    def _query(self, now: float) -> Optional[str]:
        try:
            response = requests.get(self._api_url, timeout=self._timeout_sec)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 429:
                # Throttled
                self._consecutive_http_429_count += 1
                self._consecutive_http_error_count = 0
                back_off_time = pow(
                    self._backoff_factor, self._consecutive_http_429_count
                )
                self._next_poll_timestamp = now + self._ttl_sec + back_off_time
                raise IpSourceError(
                    f"Got a HTTP 429. Backing off for {back_off_time} seconds."
                ) from e
            self._count_http_error()
            raise IpSourceError(f"The request failed with {e}") from e
        except requests.exceptions.RequestException as e:
            self._count_http_error()
            raise IpSourceError(
                f"The request failed with a {type(e).__name__} exception: {e}"
            ) from e

        self._consecutive_http_429_count = 0
        self._consecutive_http_error_count = 0

        encoded_payload = "\\n".join(response.text.splitlines())
        logger.debug(f"Response payload from {self._name}: {encoded_payload}")

        try:
            return self._get_ip_routine(response.text)
        except Exception as e:
            raise IpSourceError(
                "Failed to obtain the public IP address from the response payload"
            ) from e

    def _count_http_error(self) -> None:
        self._consecutive_http_429_count = 0
        self._consecutive_http_error_count += 1


class DnsPublicIpSource(IpSource):
    """Asks a DNS server which address the query came from (e.g. OpenDNS)."""

    def __init__(
        self,
        name: str,
        qname: str,
        nameservers: List[str],
        ttl_sec: int,
        max_inactive_secs: float = DEFAULT_MAX_INACTIVE_SECS,
        timeout_sec: float = 5,
        dns_resolver: dns.resolver.Resolver = None,
    ) -> None:
        super().__init__(
            name=name, ttl_sec=ttl_sec, max_inactive_secs=max_inactive_secs
        )
        self._qname = qname
        if dns_resolver is None:
            dns_resolver = dns.resolver.Resolver(configure=False)
            dns_resolver.nameservers = list(nameservers)
        dns_resolver.lifetime = timeout_sec
        self._dns_resolver = dns_resolver

    @property
    def qname(self) -> str:
        return self._qname

    def _query(self, now: float) -> Optional[str]:
        try:
            answer = self._dns_resolver.resolve(
                qname=self._qname, rdtype="A", raise_on_no_answer=True
            )
        except dns.exception.DNSException as e:
            raise IpSourceError(
                f"The DNS query for {self._qname} failed with a {type(e).__name__} exception: {e}"
            ) from e

        records = [record.to_text() for record in answer]
        if len(records) > 1:
            raise IpSourceError(
                f"DNS A record for {self._qname} has more than one IP address: {records}"
            )
        return records[0] if records else None


class MyPublicIP(IpResolver):
    """
    Resolves the public IP by rotating over a list of sources.

    Each call starts from the source after the one used last (the very first
    start is random so that restarts spread load across sources) and returns
    the first valid address. Sources whose TTL has not expired are skipped;
    each source is polled at most once per call. When every source is still
    inside its TTL the last address obtained is returned again. ``None`` is
    returned when the polled sources produced no address, or when nothing was
    ever obtained.
    """

    def __init__(self, public_ip_sources: List[IpSource]) -> None:
        self._public_ip_sources = public_ip_sources
        self._next_source_index = None
        self._last_ip: Optional[IPv4Address] = None

    def get_current_ip_address(self) -> Optional[IPv4Address]:
        count = len(self._public_ip_sources)
        if count < 1:
            logger.error("The list of public IP sources is empty.")
            return None

        if self._next_source_index is None:
            self._next_source_index = random.randint(0, count - 1)

        start_index = self._next_source_index
        polled = 0
        for offset in range(count):
            index = (start_index + offset) % count
            source = self._public_ip_sources[index]
            if not source.is_ready(time.time()):
                continue

            polled += 1
            self._next_source_index = (index + 1) % count
            logger.info(f"Getting public IP address from {source.name}")
            ip = source.get_my_public_ip()
            if ip is not None:
                self._last_ip = ip
                return ip
            logger.warning(f"Could not obtain the public IP address from {source.name}")

        if polled == 0:
            if self._last_ip is not None:
                logger.debug(
                    f"No public IP source is due for polling, reusing {self._last_ip}"
                )
                return self._last_ip
            logger.error("Could not find a public IP source with an expired TTL.")
        else:
            logger.error(f"None of the {polled} polled public IP sources returned an address.")
        return None
