"""
DNS record updates for the server's public address.

Handles:
- Public IP detection across several providers
- Cloudflare zone lookup and A record create/update
- Per-record outcome reporting
"""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any, Sequence
import requests

from .config import HomeConfig
from .errors import ConfigError, DnsError

logger = logging.getLogger(__name__)


CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"
IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


class RecordOutcome(Enum):
    """What happened to one DNS record."""
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    CREATED = "created"
    DRY_RUN = "dry-run"
    FAILED = "failed"


@dataclass
class RecordResult:
    name: str
    outcome: RecordOutcome
    previous: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome != RecordOutcome.FAILED


@dataclass
class DnsReport:
    """Result of updating all managed records for a domain."""
    domain: str
    ip: str
    records: List[RecordResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.records)

    def summary(self) -> str:
        done = sum(1 for r in self.records if r.ok)
        return f"{done}/{len(self.records)} records processed for {self.domain} -> {self.ip}"


def is_ipv4(value: str) -> bool:
    if not IPV4_PATTERN.match(value):
        return False
    return all(0 <= int(part) <= 255 for part in value.split("."))


def detect_public_ip(
    providers: Sequence[str],
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> str:
    """Ask each provider in turn; the first valid IPv4 answer wins."""
    session = session or requests.Session()
    for url in providers:
        try:
            response = session.get(url, timeout=timeout)
        except requests.RequestException as e:
            logger.debug(f"IP provider {url} unreachable: {e}")
            continue
        candidate = response.text.strip() if response.ok else ""
        if is_ipv4(candidate):
            logger.info(f"Detected public IP {candidate} (from {url})")
            return candidate
        logger.debug(f"IP provider {url} returned no usable address")
    raise DnsError("Could not detect public IP from any provider")


def record_fqdn(record: str, domain: str) -> str:
    """Expand '@' and '*' to names under ``domain``."""
    if record == "@":
        return domain
    if record == "*":
        return f"*.{domain}"
    return record


class CloudflareClient:
    """Minimal Cloudflare v4 API client for A records."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        base_url: str = CLOUDFLARE_API,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise DnsError(f"Cannot reach Cloudflare API: {e}") from e
        try:
            payload = response.json()
        except ValueError as e:
            raise DnsError(f"Invalid response from Cloudflare ({response.status_code})") from e
        if not payload.get("success", False):
            errors = "; ".join(
                err.get("message", "unknown error") for err in payload.get("errors") or []
            ) or f"HTTP {response.status_code}"
            raise DnsError(f"Cloudflare API error: {errors}")
        return payload.get("result")

    def zone_id(self, domain: str) -> str:
        result = self._request("GET", "/zones", params={"name": domain})
        if not result:
            raise DnsError(f"Domain {domain} not found in Cloudflare")
        return result[0]["id"]

    def list_records(self, zone_id: str, record_type: str = "A") -> List[Dict[str, Any]]:
        return self._request("GET", f"/zones/{zone_id}/dns_records", params={"type": record_type}) or []

    def get_record(self, zone_id: str, name: str) -> Optional[Dict[str, Any]]:
        result = self._request(
            "GET", f"/zones/{zone_id}/dns_records", params={"type": "A", "name": name}
        )
        return result[0] if result else None

    def create_record(self, zone_id: str, name: str, ip: str, ttl: int = 300) -> Dict[str, Any]:
        body = {"type": "A", "name": name, "content": ip, "ttl": ttl, "proxied": False}
        return self._request("POST", f"/zones/{zone_id}/dns_records", json=body)

    def update_record(self, zone_id: str, record_id: str, name: str, ip: str, ttl: int = 300) -> Dict[str, Any]:
        body = {"type": "A", "name": name, "content": ip, "ttl": ttl, "proxied": False}
        return self._request("PUT", f"/zones/{zone_id}/dns_records/{record_id}", json=body)


class DnsUpdater:
    """Points the managed records of a domain at the current public IP."""

    def __init__(
        self,
        config: HomeConfig,
        client: Optional[CloudflareClient] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self._client = client
        self._session = session

    @property
    def client(self) -> CloudflareClient:
        if self._client is None:
            token = self.config.private_env("cloudflare").get("CF_DNS_API_TOKEN", "")
            if not token:
                raise ConfigError(
                    "CF_DNS_API_TOKEN is not set (config/private/cloudflare.env)"
                )
            self._client = CloudflareClient(token, session=self._session)
        return self._client

    def default_domain(self) -> str:
        domain = self.config.private_env("common").get("BASE_DOMAIN", "")
        if not domain:
            raise ConfigError("BASE_DOMAIN is not set (config/private/common.env)")
        return domain

    def _update_record(
        self, zone_id: str, record: str, domain: str, ip: str, dry_run: bool, force: bool
    ) -> RecordResult:
        name = record_fqdn(record, domain)
        try:
            existing = self.client.get_record(zone_id, name)
            if existing is not None:
                current = existing.get("content")
                if current == ip and not force:
                    logger.info(f"{name} already points to {ip}")
                    return RecordResult(name, RecordOutcome.UNCHANGED, previous=current)
                if dry_run:
                    logger.info(f"[dry-run] would update {name}: {current} -> {ip}")
                    return RecordResult(name, RecordOutcome.DRY_RUN, previous=current)
                self.client.update_record(zone_id, existing["id"], name, ip, ttl=self.config.dns_ttl)
                logger.info(f"Updated {name}: {current} -> {ip}")
                return RecordResult(name, RecordOutcome.UPDATED, previous=current)

            if dry_run:
                logger.info(f"[dry-run] would create {name} -> {ip}")
                return RecordResult(name, RecordOutcome.DRY_RUN)
            self.client.create_record(zone_id, name, ip, ttl=self.config.dns_ttl)
            logger.info(f"Created {name} -> {ip}")
            return RecordResult(name, RecordOutcome.CREATED)
        except DnsError as e:
            logger.error(f"Failed to update {name}: {e}")
            return RecordResult(name, RecordOutcome.FAILED, message=str(e))

    def update(
        self,
        domain: Optional[str] = None,
        ip: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> DnsReport:
        """
        Create or update every managed record.

        Raises DnsError when the IP or zone cannot be determined; failures on
        individual records are reported in the returned DnsReport.
        """
        domain = domain or self.default_domain()
        if ip is None:
            ip = detect_public_ip(
                self.config.ip_providers, session=self._session, timeout=self.config.http_timeout
            )
        elif not is_ipv4(ip):
            raise DnsError(f"Not an IPv4 address: {ip}")

        zone_id = self.client.zone_id(domain)
        report = DnsReport(domain=domain, ip=ip)
        for record in self.config.dns_records:
            report.records.append(self._update_record(zone_id, record, domain, ip, dry_run, force))
        logger.info(report.summary())
        return report

    def list_records(self, domain: Optional[str] = None) -> List[Dict[str, Any]]:
        domain = domain or self.default_domain()
        return self.client.list_records(self.client.zone_id(domain))
