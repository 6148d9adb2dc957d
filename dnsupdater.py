import google.auth.transport.requests
import google.oauth2.id_token
import json
import logging
import requests

from abc import ABC, abstractmethod
from typing import Dict

from dnsservice import DnsRecordUpdater, IPAddress

logger = logging.getLogger(__name__)


class DnsUpdateError(Exception):
    pass


class AuthHelper(ABC):
    @abstractmethod
    def authenticate(self, headers: Dict[str, str]) -> None:
        pass


class GoogleAuthHelper(AuthHelper):
    """
    Adds a Google ID token for the DynDNS function to outgoing requests.

    The token is cached and only fetched again once it has expired, so a
    single helper should be shared by every updater the process creates.
    """

    def __init__(self, dyn_dns_api_url: str) -> None:
        super().__init__()
        self._id_token = None
        self._dyn_dns_api_url = dyn_dns_api_url

    def authenticate(self, headers: Dict[str, str]) -> None:
        if self._id_token is None or self._id_token.expired:
            logger.info("An Id Token needs to be generated to call the DynDNS Function.")
            self._id_token = self._get_id_token()
        self._id_token.apply(headers=headers)

    def _get_id_token(self):
        logger.info(f"Obtaining new Id Token for {self._dyn_dns_api_url}")

        id_token = google.oauth2.id_token.fetch_id_token_credentials(
            audience=self._dyn_dns_api_url
        )
        id_token.refresh(request=google.auth.transport.requests.Request())
        if id_token.expired or not id_token.valid:
            raise DnsUpdateError("Failed to obtain a valid Id Token.")

        logger.info(f"Obtained a new token with expiry date: {id_token.expiry}")
        return id_token


class DynDnsUpdater(DnsRecordUpdater):
    def __init__(
        self,
        zone_name: str,
        zone_dns_name: str,
        dyn_dns_api_url: str,
        hostname: str,
        auth_helper: AuthHelper,
        session: requests.Session = None,
        timeout_sec: float = 30,
    ) -> None:
        self._zone_name = zone_name
        self._zone_dns_name = zone_dns_name
        self._dyn_dns_api_url = dyn_dns_api_url
        self._hostname = hostname
        self._auth_helper = auth_helper
        self._session = session or requests.Session()
        self._timeout_sec = timeout_sec

    @property
    def hostname(self) -> str:
        return self._hostname

    def update_dns_record(self, ip: IPAddress) -> None:
        headers = {
            "Content-Type": "application/json",
        }
        self._auth_helper.authenticate(headers=headers)

        data = {
            "zone_name": self._zone_name,
            "zone_dns_name": self._zone_dns_name,
            "hostname": self._hostname,
            "ip_address": ip.exploded,
        }

        try:
            response = self._session.post(
                url=self._dyn_dns_api_url,
                headers=headers,
                data=json.dumps(data),
                timeout=self._timeout_sec,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as re:
            raise DnsUpdateError(
                f"Failed to call the DynDNS function for {self._hostname}: {re}"
            ) from re

        logger.info(f"DynDNS API response payload: {response.content}")
        logger.info(
            f"Successfully updated the {self._hostname} DNS A record with IP {ip}",
            extra={"status_code": response.status_code},
        )

    def close(self) -> None:
        self._session.close()
