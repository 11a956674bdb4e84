from __future__ import annotations

import math
import re
from typing import Any, Iterable, Mapping

from app.domain import DomainRecord

# Labels of 1-63 alphanumerics/hyphens that neither start nor end with a
# hyphen, closed by an alphabetic TLD of at least two letters.
DOMAIN_PATTERN = re.compile(
    r"\b(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}\b", re.IGNORECASE
)

DOMAIN_FIELD_CANDIDATES: tuple[str, ...] = (
    "domain",
    "dominio",
    "domain_name",
    "nombre_dominio",
    "name",
    "hostname",
    "host",
    "fqdn",
    "url",
    "website",
    "com_domain",
)
AVAILABLE_FIELD_CANDIDATES: tuple[str, ...] = (
    "available",
    "is_available",
    "isAvailable",
    "com_available",
    "disponible",
    "libre",
    "disponibilidad",
)
PRICE_FIELD_CANDIDATES: tuple[str, ...] = (
    "price",
    "com_price",
    "amount",
    "precio",
    "registration_price",
    "registrationPrice",
    "sale_price",
    "salePrice",
)
CURRENCY_FIELD_CANDIDATES: tuple[str, ...] = ("currency", "currencyCode", "currency_code", "moneda")
STATUS_FIELD_CANDIDATES: tuple[str, ...] = (
    "status",
    "state",
    "pricingMode",
    "estado",
    "availability_status",
)

_TRUE_TOKENS = frozenset({"true", "1", "yes", "si", "sí", "available", "libre"})
_FALSE_TOKENS = frozenset({"false", "0", "no", "occupied", "ocupado", "taken"})


def find_domain_in_text(value: str) -> str | None:
    match = DOMAIN_PATTERN.search(value.lower())
    return match.group(0) if match else None


def first_present(item: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Return the first value under ``keys`` that is not None."""

    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    return None


def coerce_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ".", 1))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _extract_domain_field(item: Mapping[str, Any]) -> str | None:
    for key in DOMAIN_FIELD_CANDIDATES:
        value = item.get(key)
        if isinstance(value, str):
            found = find_domain_in_text(value) or value.strip().lower()
            if "." in found:
                return found

    for value in item.values():
        if not isinstance(value, str):
            continue
        found = find_domain_in_text(value)
        if found:
            return found
    return None


def _split_tld(domain: str) -> str:
    return domain.rsplit(".", 1)[-1]


def normalize_domain(row: Any) -> DomainRecord | None:
    """Convert one upstream row into a ``DomainRecord``; unusable rows yield None."""

    if isinstance(row, str):
        domain = find_domain_in_text(row) or row.strip().lower()
        if "." not in domain:
            return None
        return DomainRecord(domain=domain, tld=_split_tld(domain), raw={"value": row})

    if not isinstance(row, dict):
        return None

    raw_domain = _extract_domain_field(row)
    if not raw_domain:
        return None
    domain = raw_domain.strip().lower()

    price = coerce_number(first_present(row, PRICE_FIELD_CANDIDATES))
    if price is not None and price < 0:
        price = None
    currency = first_present(row, CURRENCY_FIELD_CANDIDATES)
    status = first_present(row, STATUS_FIELD_CANDIDATES)

    return DomainRecord(
        domain=domain,
        tld=_split_tld(domain),
        available=coerce_bool(first_present(row, AVAILABLE_FIELD_CANDIDATES)),
        price=price,
        currency=currency if isinstance(currency, str) else None,
        status=status if isinstance(status, str) else None,
        raw=row,
    )
