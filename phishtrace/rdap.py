"""Extraction helpers for RDAP responses (RFC 9083).

RDAP servers vary a lot in what they fill in, so every helper is tolerant:
missing or oddly-shaped members give None rather than an exception.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Optional


def _entities(obj: Any) -> list[dict[str, Any]]:
    if not isinstance(obj, dict):
        return []
    ents = obj.get("entities")
    if not isinstance(ents, list):
        return []
    return [e for e in ents if isinstance(e, dict)]


def roles(entity: dict[str, Any]) -> list[str]:
    r = entity.get("roles")
    if not isinstance(r, list):
        return []
    return [str(x).lower() for x in r if isinstance(x, str)]


def walk_entities(obj: Any) -> Iterator[dict[str, Any]]:
    """Depth-first over the entities of obj, including nested ones."""
    for entity in _entities(obj):
        yield entity
        yield from walk_entities(entity)


def vcard_values(entity: dict[str, Any], prop: str) -> list[str]:
    """All string values of jCard property `prop`, in document order."""
    card = entity.get("vcardArray")
    if not (isinstance(card, list) and len(card) >= 2 and isinstance(card[1], list)):
        return []

    out: list[str] = []
    for item in card[1]:
        # [name, parameters, type, value, ...]
        if not (isinstance(item, list) and len(item) >= 4):
            continue
        if str(item[0]).lower() != prop:
            continue
        for value in item[3:]:
            if isinstance(value, str):
                out.append(value)
            elif isinstance(value, list):
                out.extend(v for v in value if isinstance(v, str))
    return out


def full_name(entity: dict[str, Any]) -> Optional[str]:
    for prop in ("fn", "org"):
        for value in vcard_values(entity, prop):
            if value.strip():
                return value.strip()
    return None


def _last_with_role(entities: list[dict[str, Any]], role: str) -> Optional[dict[str, Any]]:
    found = [e for e in entities if role in roles(e)]
    return found[-1] if found else None


def registrar_entity(payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    return _last_with_role(_entities(payload), "registrar")


def _email_of(entity: Optional[dict[str, Any]]) -> Optional[str]:
    if entity is None:
        return None
    emails = [v.strip() for v in vcard_values(entity, "email") if v.strip()]
    return emails[-1] if emails else None


def abuse_email(payload: dict[str, Any], *, within: Optional[dict[str, Any]] = None) -> Optional[str]:
    """Abuse contact email.

    Prefers the abuse entity nested under `within` (the registrar for
    domains), then any abuse entity anywhere in the response.
    """
    if within is not None:
        email = _email_of(_last_with_role(_entities(within), "abuse"))
        if email:
            return email

    for entity in walk_entities(payload):
        if "abuse" in roles(entity):
            email = _email_of(entity)
            if email:
                return email
    return None


def event_date(payload: dict[str, Any], action: str) -> Optional[str]:
    events = payload.get("events")
    if not isinstance(events, list):
        return None
    for event in events:
        if not isinstance(event, dict):
            continue
        if str(event.get("eventAction", "")).lower() == action:
            date = event.get("eventDate")
            if isinstance(date, str) and date.strip():
                return date.strip()
    return None


def _str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _cidrs(payload: dict[str, Any]) -> list[str]:
    out: list[str] = []
    raw = payload.get("cidr0_cidrs")
    if not isinstance(raw, list):
        return out
    for c in raw:
        if not isinstance(c, dict):
            continue
        prefix = c.get("v4prefix") or c.get("v6prefix")
        length = c.get("length")
        if isinstance(prefix, str) and isinstance(length, int):
            out.append(f"{prefix}/{length}")
    return out


def parse_ip_network(payload: dict[str, Any]) -> dict[str, Any]:
    """Fields of an `ip network` response used for attribution."""
    organization = None
    for role in ("registrant", "administrative", "technical"):
        for entity in walk_entities(payload):
            if role in roles(entity):
                organization = full_name(entity)
                if organization:
                    break
        if organization:
            break

    network = {
        "handle": _str(payload.get("handle")),
        "name": _str(payload.get("name")),
        "start_address": _str(payload.get("startAddress")),
        "end_address": _str(payload.get("endAddress")),
        "cidrs": _cidrs(payload),
        "country": _str(payload.get("country")),
        "type": _str(payload.get("type")),
    }

    return {
        "organization": organization or network["name"],
        "abuse_email": abuse_email(payload),
        "registration_date": event_date(payload, "registration"),
        "network": network,
    }


def parse_domain(payload: dict[str, Any]) -> dict[str, Any]:
    """Fields of a `domain` response used for attribution."""
    registrar = registrar_entity(payload)

    organization = None
    for entity in walk_entities(payload):
        if "registrant" in roles(entity):
            organization = full_name(entity)
            if organization:
                break

    return {
        "organization": organization,
        "registrar": full_name(registrar) if registrar is not None else None,
        "abuse_email": abuse_email(payload, within=registrar),
        "registration_date": event_date(payload, "registration"),
    }
