"""
WHOIS/DNS lookup gateway.

Client for a WHOIS/DNS aggregation API exposing

    GET {base}/lookup/{domain}   combined WHOIS + DNS
    GET {base}/whois/{domain}
    GET {base}/dns/{domain}

responding with ``{"success": bool, "data": {...}, "error": ...}``.

The combined endpoint is tried first. On any failure the gateway falls back
exactly once to the two separate endpoints, queried concurrently; the lookup
succeeds if either of them does. Response bodies are normalized into
``DnsRecord`` lists and a ``WhoisInfo`` with YYYY-MM-DD dates and a fixed
status-code taxonomy.
"""

import asyncio
import calendar
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence
from urllib.parse import quote

import httpx
import idna

from .audit_logger import AuditLogger
from .config import DEFAULT_WHOIS_BASE_URL, WhoisConfig
from .domain_state import Classification, classify
from .enums import LookupErrorCode, LookupSource
from .models import DnsRecord, Server, Settings

DNS_RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "TXT", "NS", "SOA")

HTTP_ERROR_MESSAGES = {
    400: "Bad request, check the domain name format",
    401: "API key is invalid or expired",
    403: "API key lacks permission or the request was refused",
    404: "Domain does not exist or is not registered",
    429: "Too many requests, try again later",
    500: "WHOIS service internal error",
    502: "WHOIS upstream service unavailable",
    503: "Service temporarily unavailable, try again later",
}

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ISO_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_ISO_INNER_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})(?:[\sT]|$)")
_DMY_SLASH_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")
_DMY_MON_RE = re.compile(r"(\d{1,2})-([A-Za-z]{3})-(\d{4})")
_STRICT_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_EPP_CODE_RE = re.compile(r"^([a-z]+)[\s#]")
_STATUS_SPLIT_RE = re.compile(r"[,\n]+")
_RAW_EXPIRY_RE = re.compile(r"(?:Expiry|Expiration) Date:\s*([^\n]+)", re.IGNORECASE)
_EXPIRY_HINT_RE = re.compile(r"Expiry|Expiration", re.IGNORECASE)

# Keys searched at any depth of a WHOIS body, in order.
EXPIRATION_KEYS = (
    "expires",
    "expiry",
    "expiration",
    "expirationDate",
    "expiration_date",
    "registryExpiryDate",
    "Expiry Date",
    "Registrar Registration Expiration Date",
)
RAW_TEXT_KEYS = ("raw_text", "rawText", "raw", "text")


@dataclass
class GatewayError:
    """Structured error for one failed API call or lookup."""

    code: str
    message: str
    status: Optional[int] = None
    details: Any = None

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.status is not None:
            data["status"] = self.status
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class ApiResponse:
    success: bool
    data: Any = None
    error: Optional[GatewayError] = None


@dataclass
class WhoisInfo:
    """Normalized registration data."""

    registrar: Optional[str] = None
    expiration_date: Optional[str] = None
    creation_date: Optional[str] = None
    updated_date: Optional[str] = None
    name_servers: list[str] = field(default_factory=list)
    status: list[str] = field(default_factory=list)
    dnssec: Optional[str] = None
    raw_text: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "registrar": self.registrar,
            "expirationDate": self.expiration_date,
            "creationDate": self.creation_date,
            "updatedDate": self.updated_date,
            "nameServers": list(self.name_servers),
            "status": list(self.status),
            "dnssec": self.dnssec,
        }


@dataclass
class LookupResult:
    """Outcome of ``WhoisGateway.lookup``."""

    success: bool
    domain: str
    records: list[DnsRecord] = field(default_factory=list)
    whois: Optional[WhoisInfo] = None
    source: Optional[LookupSource] = None
    error: Optional[GatewayError] = None
    dns_error: Optional[GatewayError] = None
    whois_error: Optional[GatewayError] = None
    classification: Optional[Classification] = None

    def to_dict(self) -> dict:
        data: dict = {"success": self.success, "domain": self.domain}
        if not self.success:
            data["error"] = self.error.to_dict() if self.error else None
            return data
        data["dns"] = {"records": [r.to_dict() for r in self.records]}
        if self.dns_error:
            data["dns"]["error"] = self.dns_error.to_dict()
        data["whois"] = self.whois.to_dict() if self.whois else {}
        if self.whois_error:
            data["whoisError"] = self.whois_error.to_dict()
        if self.classification:
            data["state"] = self.classification.state.value
            data["daysRemaining"] = self.classification.days_remaining
        data["source"] = self.source.value if self.source else None
        return data


def normalize_base_url(base_url: Optional[str], default: str = DEFAULT_WHOIS_BASE_URL) -> str:
    """
    Strip trailing slashes and a trailing ``/whois`` or ``/whois/{domain}``.

    An empty ``base_url`` falls back to ``default``.
    """
    base = (base_url or "").strip() or default
    base = base.rstrip("/")
    if base.endswith("/whois/{domain}"):
        base = base[: -len("/whois/{domain}")]
    if base.endswith("/whois"):
        base = base[: -len("/whois")]
    base = base.rstrip("/")
    if base:
        return base
    return default.rstrip("/") or DEFAULT_WHOIS_BASE_URL


def build_headers(api_key: Optional[str]) -> dict[str, str]:
    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if api_key:
        headers["X-API-Key"] = str(api_key)
    return headers


def canonical_domain(domain_name: str) -> str:
    """
    ASCII (punycode) form of a domain name, lower-cased, without trailing dot.

    Raises:
        idna.IDNAError: If the name is not a valid IDNA domain
    """
    name = (domain_name or "").strip().rstrip(".")
    if not name:
        raise idna.IDNAError("Empty domain name")
    return idna.encode(name, uts46=True).decode("ascii").lower()


def friendly_http_message(status: int, body: str) -> str:
    message = HTTP_ERROR_MESSAGES.get(status, f"Unknown error ({status})")
    try:
        parsed = json.loads(body)
    except ValueError:
        return message
    if isinstance(parsed, dict):
        if parsed.get("detail"):
            message += f": {parsed['detail']}"
        elif parsed.get("message"):
            message += f": {parsed['message']}"
    return message


def _valid_ymd(year: int, month: int, day: int) -> Optional[str]:
    if year < 1 or not 1 <= month <= 12:
        return None
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_date(text: Any) -> Optional[str]:
    """
    Normalize a WHOIS date to ``YYYY-MM-DD``.

    Understands ISO dates (optionally followed by a time), ``DD/MM/YYYY`` and
    ``DD-Mon-YYYY``. Unrecognized or impossible dates give None.
    """
    if not text or not isinstance(text, str):
        return None
    text = text.strip()

    match = _ISO_PREFIX_RE.match(text) or _ISO_INNER_RE.search(text)
    if match:
        return _valid_ymd(int(match[1]), int(match[2]), int(match[3]))

    match = _DMY_SLASH_RE.search(text)
    if match:
        return _valid_ymd(int(match[3]), int(match[2]), int(match[1]))

    match = _DMY_MON_RE.search(text)
    if match:
        month = _MONTHS.get(match[2].lower())
        if month is None:
            return None
        return _valid_ymd(int(match[3]), month, int(match[1]))

    return None


def is_valid_date_string(value: Any) -> bool:
    """True for a strict ``YYYY-MM-DD`` between 1970 and 2100."""
    if not value or not isinstance(value, str):
        return False
    match = _STRICT_DATE_RE.match(value)
    if not match:
        return False
    year, month, day = int(match[1]), int(match[2]), int(match[3])
    return 1970 <= year <= 2100 and 1 <= month <= 12 and 1 <= day <= 31


def _status_code(raw: str) -> Optional[str]:
    s = raw.lower()
    match = _EPP_CODE_RE.match(s)
    code = match[1] if match else s
    if "clienthold" in code or "client hold" in s:
        return "clientHold"
    if "serverhold" in code or "server hold" in s:
        return "serverHold"
    if "pendingdelete" in code or "pending delete" in s:
        return "pendingDelete"
    if "redemption" in code:
        return "redemptionPeriod"
    if "clientdeleteprohibited" in code:
        return "clientDeleteProhibited"
    if "clienttransferprohibited" in code:
        return "clientTransferProhibited"
    if "clientupdateprohibited" in code:
        return "clientUpdateProhibited"
    if code in ("ok", "active"):
        return "active"
    if "inactive" in code:
        return "inactive"
    return None


def normalize_status(statuses: Any) -> list[str]:
    """
    Map raw EPP status strings onto the known taxonomy, order-preserving and
    deduplicated. A single string holding several codes separated by commas
    or newlines is split first.
    """
    if isinstance(statuses, str):
        statuses = [part.strip() for part in _STATUS_SPLIT_RE.split(statuses) if part.strip()]
    if not isinstance(statuses, (list, tuple)):
        return []
    normalized: list[str] = []
    for raw in statuses:
        code = _status_code(str(raw))
        if code and code not in normalized:
            normalized.append(code)
    return normalized


def _record_value(raw: dict) -> str:
    for key in ("value", "data", "target", "answer"):
        if raw.get(key):
            return str(raw[key])
    return ""


def _record_ttl(raw: dict) -> int:
    for key in ("ttl", "TTL"):
        value = raw.get(key)
        if value:
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return 300


def _record(raw: dict, record_type: str, domain_name: str) -> DnsRecord:
    name = str(raw.get("name") or raw.get("host") or domain_name)
    return DnsRecord(
        type=str(record_type).upper(),
        name=name[:-1] if name.endswith(".") else name,
        value=_record_value(raw),
        ttl=_record_ttl(raw),
    )


def parse_dns_records(payload: Any, domain_name: str) -> list[DnsRecord]:
    """
    Extract DNS records from a flat ``records`` array (top level or under
    ``data``) or from per-type buckets keyed ``A``/``a``, ``MX``/``mx``...
    """
    if not isinstance(payload, dict):
        return []
    for container in (payload, payload.get("data")):
        if isinstance(container, dict) and isinstance(container.get("records"), list):
            return [
                _record(r, r.get("type", ""), domain_name)
                for r in container["records"] if isinstance(r, dict)
            ]

    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    records: list[DnsRecord] = []
    for record_type in DNS_RECORD_TYPES:
        bucket = data.get(record_type) or data.get(record_type.lower()) or []
        if not isinstance(bucket, list):
            continue
        for raw in bucket:
            if isinstance(raw, dict):
                records.append(_record(raw, record_type, domain_name))
            elif isinstance(raw, str):
                records.append(_record({"value": raw}, record_type, domain_name))
    return records


def _first(strategies: Sequence[Callable[[dict], Any]], data: dict) -> Any:
    for strategy in strategies:
        value = strategy(data)
        if value:
            return value
    return None


def _registrar_name(data: dict) -> Optional[str]:
    registrar = data.get("registrar")
    if isinstance(registrar, dict):
        return registrar.get("name") or None
    return None


REGISTRAR_STRATEGIES: tuple[Callable[[dict], Any], ...] = (
    lambda d: d.get("registrar") if isinstance(d.get("registrar"), str) else None,
    _registrar_name,
    lambda d: d.get("registrar_name"),
)

def _find_value(obj: Any, keys: Sequence[str], depth: int = 0) -> Any:
    """First value stored under one of ``keys``, searching nested dicts and lists depth-first."""
    if depth > 8:
        return None
    if isinstance(obj, dict):
        for key, value in obj.items():
            if key in keys:
                return value
            found = _find_value(value, keys, depth + 1)
            if found is not None:
                return found
    elif isinstance(obj, list):
        for item in obj:
            found = _find_value(item, keys, depth + 1)
            if found is not None:
                return found
    return None


def _date_from(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return parse_date(value)
    if isinstance(value, list):
        strings = [v for v in value if isinstance(v, str)]
        hinted = [s for s in strings if _EXPIRY_HINT_RE.search(s)]
        return parse_date((hinted or strings or [None])[0])
    return None


def _detail_date(data: dict) -> Optional[str]:
    detail = data.get("detail")
    if isinstance(detail, dict) and isinstance(detail.get("date"), list):
        return _date_from([s for s in detail["date"] if isinstance(s, str)][:1])
    return None


def raw_whois_text(data: dict) -> str:
    value = _find_value(data, RAW_TEXT_KEYS)
    if isinstance(value, list):
        return "\n".join(str(line) for line in value)
    return value if isinstance(value, str) else ""


def _raw_text_expiry(data: dict) -> Optional[str]:
    match = _RAW_EXPIRY_RE.search(raw_whois_text(data))
    return parse_date(match[1].strip()) if match else None


EXPIRATION_STRATEGIES: tuple[Callable[[dict], Any], ...] = (
    lambda d: parse_date(d.get("expiration_date")),
    lambda d: parse_date(d.get("expiry_date")),
    lambda d: parse_date(d.get("registry_expiry_date")),
    lambda d: parse_date(d.get("expires")),
    _detail_date,
    lambda d: _date_from(_find_value(d, EXPIRATION_KEYS)),
    _raw_text_expiry,
)

STATUS_STRATEGIES: tuple[Callable[[dict], Any], ...] = (
    lambda d: d.get("status"),
    lambda d: d.get("domain_status"),
    lambda d: d.get("statuses"),
)

NAME_SERVER_STRATEGIES: tuple[Callable[[dict], Any], ...] = (
    lambda d: d.get("name_servers"),
    lambda d: d.get("nameservers"),
    lambda d: d.get("nameServers"),
)


def parse_whois_data(payload: Any) -> WhoisInfo:
    """Normalize a WHOIS body (optionally wrapped in ``data``)."""
    if not isinstance(payload, dict):
        return WhoisInfo()
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload

    name_servers = _first(NAME_SERVER_STRATEGIES, data) or []
    if isinstance(name_servers, str):
        name_servers = [name_servers]
    dnssec = data.get("dnssec")
    raw_text = raw_whois_text(data)

    return WhoisInfo(
        registrar=_first(REGISTRAR_STRATEGIES, data),
        expiration_date=_first(EXPIRATION_STRATEGIES, data),
        creation_date=parse_date(data.get("creation_date")),
        updated_date=parse_date(data.get("updated_date")),
        name_servers=[str(ns).lower().rstrip(".") for ns in name_servers if ns],
        status=normalize_status(_first(STATUS_STRATEGIES, data) or []),
        dnssec=str(dnssec) if dnssec else None,
        raw_text=raw_text or None,
    )


def link_records(records: Sequence[DnsRecord], servers: Sequence[Server]) -> list[DnsRecord]:
    """Set ``linked_server_id`` on A/AAAA records whose value is a known server IP."""
    by_ip = {}
    for server in servers:
        if server.ip and server.ip not in by_ip:
            by_ip[server.ip] = server.id
    linked = []
    for record in records:
        server_id = by_ip.get(record.value) if record.type in ("A", "AAAA") else None
        linked.append(DnsRecord(
            type=record.type,
            name=record.name,
            value=record.value,
            ttl=record.ttl,
            linked_server_id=server_id or record.linked_server_id,
        ))
    return linked


class WhoisGateway:
    """Async client for the WHOIS/DNS aggregation API."""

    def __init__(
        self,
        config: Optional[WhoisConfig] = None,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Timeouts and default endpoint
            logger: Optional audit logger
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self._config = config or WhoisConfig()
        self._logger = logger
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "WhoisGateway":
        self._client = self._new_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_seconds),
            follow_redirects=True,
            transport=self._transport,
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        timeout: float,
    ) -> ApiResponse:
        try:
            response = await client.get(url, headers=headers, timeout=timeout)
        except httpx.TimeoutException:
            return ApiResponse(False, error=GatewayError(
                LookupErrorCode.TIMEOUT.value, "Request timed out, the API took too long to respond",
            ))
        except httpx.HTTPError as e:
            return ApiResponse(False, error=GatewayError(
                LookupErrorCode.NETWORK_ERROR.value, f"Network request failed: {e}",
            ))

        if not response.is_success:
            body = response.text
            return ApiResponse(False, error=GatewayError(
                code=f"HTTP_{response.status_code}",
                message=friendly_http_message(response.status_code, body),
                status=response.status_code,
                details=body[:500],
            ))

        try:
            payload = response.json()
        except ValueError:
            return ApiResponse(False, error=GatewayError(
                LookupErrorCode.PARSE_ERROR.value, "Response body is not valid JSON",
            ))
        if not isinstance(payload, dict):
            return ApiResponse(False, error=GatewayError(
                LookupErrorCode.PARSE_ERROR.value, "Response body is not a JSON object",
            ))
        if payload.get("success") is False and payload.get("error"):
            return ApiResponse(False, error=GatewayError(
                LookupErrorCode.API_ERROR.value, str(payload["error"]), details=payload,
            ))
        return ApiResponse(True, data=payload.get("data") or payload)

    async def lookup(self, domain_name: str, settings: Optional[Settings] = None) -> LookupResult:
        """
        Look up WHOIS and DNS data for ``domain_name``.

        Never raises for upstream trouble; failures come back as
        ``success=False`` with a structured error.
        """
        settings = settings or Settings()
        try:
            ascii_name = canonical_domain(domain_name)
        except idna.IDNAError as e:
            return LookupResult(False, domain_name, error=GatewayError(
                LookupErrorCode.INVALID_DOMAIN.value, f"Invalid domain name: {e}",
            ))

        base_url = normalize_base_url(settings.whois_api_base_url, self._config.default_base_url)
        headers = build_headers(settings.whois_api_key)
        quoted = quote(ascii_name, safe="")
        timeout = self._config.timeout_seconds

        if self._client is not None:
            return await self._lookup_with(self._client, domain_name, ascii_name, base_url, quoted, headers, timeout)
        async with self._new_client() as client:
            return await self._lookup_with(client, domain_name, ascii_name, base_url, quoted, headers, timeout)

    async def _lookup_with(
        self,
        client: httpx.AsyncClient,
        domain_name: str,
        ascii_name: str,
        base_url: str,
        quoted: str,
        headers: dict[str, str],
        timeout: float,
    ) -> LookupResult:
        combined = await self._request(client, f"{base_url}/lookup/{quoted}", headers, timeout)
        if combined.success and isinstance(combined.data, dict) and combined.data:
            data = combined.data
            records = parse_dns_records(data.get("dns"), ascii_name) if data.get("dns") else []
            whois = parse_whois_data(data["whois"]) if data.get("whois") else None
            return self._finish(LookupResult(
                success=True,
                domain=domain_name,
                records=records,
                whois=whois,
                source=LookupSource.LOOKUP,
            ))

        self._log_fallback(domain_name, combined.error)
        dns_response, whois_response = await asyncio.gather(
            self._request(client, f"{base_url}/dns/{quoted}", headers, timeout),
            self._request(client, f"{base_url}/whois/{quoted}", headers, timeout),
        )

        if not dns_response.success and not whois_response.success:
            return LookupResult(False, domain_name, error=GatewayError(
                code=LookupErrorCode.QUERY_FAILED.value,
                message="Domain lookup failed",
                details={
                    "dnsError": dns_response.error.to_dict() if dns_response.error else None,
                    "whoisError": whois_response.error.to_dict() if whois_response.error else None,
                },
            ), dns_error=dns_response.error, whois_error=whois_response.error)

        return self._finish(LookupResult(
            success=True,
            domain=domain_name,
            records=parse_dns_records(dns_response.data, ascii_name) if dns_response.success else [],
            whois=parse_whois_data(whois_response.data) if whois_response.success else None,
            source=LookupSource.SEPARATE,
            dns_error=dns_response.error,
            whois_error=whois_response.error,
        ))

    @staticmethod
    def _finish(result: LookupResult) -> LookupResult:
        whois = result.whois or WhoisInfo()
        result.classification = classify(whois.status, result.records, whois.expiration_date)
        return result

    async def test_config(self, settings: Optional[Settings] = None, test_domain: str = "example.com") -> dict:
        """
        Probe the configured ``/whois`` and ``/dns`` endpoints once each.

        Returns:
            Report with ``ok``, ``apiBase``, ``hasApiKey``, per-endpoint
            ``tests`` and, on failure, an ``errorSummary`` list
        """
        settings = settings or Settings()
        base_url = normalize_base_url(settings.whois_api_base_url, self._config.default_base_url)
        headers = build_headers(settings.whois_api_key)
        quoted = quote(test_domain, safe="")
        timeout = self._config.test_timeout_seconds

        whois_url = f"{base_url}/whois/{quoted}"
        dns_url = f"{base_url}/dns/{quoted}"
        async with self._new_client() as client:
            whois_response, dns_response = await asyncio.gather(
                self._request(client, whois_url, headers, timeout),
                self._request(client, dns_url, headers, timeout),
            )

        report: dict = {
            "ok": whois_response.success and dns_response.success,
            "apiBase": base_url,
            "hasApiKey": bool(settings.whois_api_key),
            "tests": {
                "whois": {
                    "url": whois_url,
                    "success": whois_response.success,
                    "error": whois_response.error.to_dict() if whois_response.error else None,
                    "sample": self._whois_sample(whois_response.data) if whois_response.success else None,
                },
                "dns": {
                    "url": dns_url,
                    "success": dns_response.success,
                    "error": dns_response.error.to_dict() if dns_response.error else None,
                    "sample": self._dns_sample(dns_response.data, test_domain) if dns_response.success else None,
                },
            },
        }
        if not report["ok"]:
            summary = []
            if whois_response.error:
                summary.append(f"WHOIS: {whois_response.error.message}")
            if dns_response.error:
                summary.append(f"DNS: {dns_response.error.message}")
            report["errorSummary"] = summary
        return report

    @staticmethod
    def _whois_sample(data: Any) -> dict:
        data = data if isinstance(data, dict) else {}
        status = data.get("status")
        if isinstance(status, list):
            status = status[:3]
        return {
            "domain": data.get("domain"),
            "registrar": data.get("registrar"),
            "expiration_date": data.get("expiration_date"),
            "status": status,
        }

    @staticmethod
    def _dns_sample(data: Any, test_domain: str) -> dict:
        records = parse_dns_records(data, test_domain)
        types: list[str] = []
        for record in records:
            if record.type not in types:
                types.append(record.type)
        return {
            "domain": data.get("domain") if isinstance(data, dict) else None,
            "recordCount": len(records),
            "recordTypes": types,
        }

    def _log_fallback(self, domain_name: str, error: Optional[GatewayError]) -> None:
        if self._logger is None:
            return
        self._logger.warn(
            "WhoisGateway",
            "Lookup endpoint failed, falling back to separate queries",
            {"domain": domain_name, "error": error.to_dict() if error else None},
        )
