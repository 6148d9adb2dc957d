import re

from typing import List, Optional

from publicip import DnsPublicIpSource, IpSource, PublicIpSource

_dyn_dns_org_re = re.compile(
    r"(?im)Current IP Address: (?P<ip>\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"
)


def get_ip_with_re(response_payload: str, exp: re.Pattern) -> Optional[str]:
    match = exp.search(response_payload)
    if match is None:
        return None
    return match.group("ip")


def default_public_ip_sources() -> List[IpSource]:
    return [
        PublicIpSource(
            name="AWS",
            api_url="https://checkip.amazonaws.com",
            ttl_sec=60,
        ),
        # Policies: https://help.dyn.com/remote-access-api/checkip-tool/
        PublicIpSource(
            name="DynDNS",
            api_url="http://checkip.dyndns.org",
            ttl_sec=600,
            get_ip_routine=lambda payload: get_ip_with_re(payload, _dyn_dns_org_re),
        ),
        # Policy: https://www.wtfismyip.com/automation
        PublicIpSource(
            name="WtfIsMyIP",
            api_url="https://ipv4.wtfismyip.com/text",
            ttl_sec=60,
        ),
        PublicIpSource(
            name="ICanHazIP",
            api_url="https://ipv4.icanhazip.com",
            ttl_sec=60,
        ),
        PublicIpSource(
            name="Ipify",
            api_url="https://api.ipify.org",
            ttl_sec=60,
        ),
        # resolver1/resolver2.opendns.com answer myip.opendns.com with the caller's address
        DnsPublicIpSource(
            name="OpenDNS",
            qname="myip.opendns.com",
            nameservers=["208.67.222.222", "208.67.220.220"],
            ttl_sec=60,
        ),
    ]
