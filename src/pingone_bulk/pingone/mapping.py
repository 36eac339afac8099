"""Map CSV rows to PingOne user payloads."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


# Lookup keys that identify the target user rather than describe it.
IDENTIFIER_KEYS = ("userId", "id")

_NAME_FIELDS = (
    (("firstName", "givenName"), "given"),
    (("lastName", "familyName"), "family"),
    (("middleName",), "middle"),
    (("formattedName",), "formatted"),
    (("prefix",), "honorificPrefix"),
    (("suffix",), "honorificSuffix"),
)

_PROFILE_FIELDS = ("nickname", "title", "preferredLanguage", "locale", "timezone", "externalId", "type")

_ADDRESS_FIELDS = ("streetAddress", "locality", "region", "postalCode", "countryCode")

_TRUE_VALUES = {"true", "1", "yes", "y"}


def _value(row: Mapping[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = row.get(key)
        if isinstance(value, str):
            value = value.strip()
        if value not in (None, ""):
            return value
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def map_user_record(row: Mapping[str, Any], default_population_id: Optional[str] = None) -> Dict[str, Any]:
    """Build the PingOne user body for a CSV row.

    Blank cells are ignored. ``populationId`` in the row wins over the default.
    """
    user: Dict[str, Any] = {}

    for key in ("username", "email"):
        value = _value(row, key)
        if value is not None:
            user[key] = value

    population_id = _value(row, "populationId") or default_population_id
    if population_id:
        user["population"] = {"id": population_id}

    active = _value(row, "active", "enabled")
    if active is not None:
        user["enabled"] = _as_bool(active)

    name = {}
    for sources, target in _NAME_FIELDS:
        value = _value(row, *sources)
        if value is not None:
            name[target] = value
    if name:
        user["name"] = name

    for key in _PROFILE_FIELDS:
        value = _value(row, key)
        if value is not None:
            user[key] = value

    primary_phone = _value(row, "primaryPhone")
    mobile_phone = _value(row, "mobilePhone")
    phones = []
    if primary_phone:
        phones.append({"value": primary_phone, "type": "work", "primary": True})
    if mobile_phone and mobile_phone != primary_phone:
        phones.append({"value": mobile_phone, "type": "mobile", "primary": False})
    if phones:
        user["phoneNumbers"] = phones

    address = {key: _value(row, key) for key in _ADDRESS_FIELDS}
    address = {key: value for key, value in address.items() if value is not None}
    if address:
        user["addresses"] = [{"type": "work", "primary": True, **address}]

    password = _value(row, "password")
    if password:
        user["password"] = {"value": password, "forceChange": False}

    return user


def import_payload(row: Mapping[str, Any], default_population_id: Optional[str] = None) -> Dict[str, Any]:
    user = map_user_record(row, default_population_id)
    user.setdefault("enabled", True)
    return user


def modify_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Changed-fields body for a modify row.

    An explicit ``userData`` mapping is used as-is; otherwise the row's columns
    are mapped like an import, minus the lookup keys.
    """
    explicit = row.get("userData")
    if isinstance(explicit, Mapping):
        return dict(explicit)

    data = {k: v for k, v in row.items() if k not in IDENTIFIER_KEYS}
    update = map_user_record(data)
    # username is the lookup key when no id is given, never a change
    if _value(row, *IDENTIFIER_KEYS) is None:
        update.pop("username", None)
    return update


def has_changes(update: Mapping[str, Any], current: Mapping[str, Any]) -> bool:
    """Shallow comparison, one level deep for nested objects such as ``name``."""
    for key, value in update.items():
        existing = current.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            if any(value[sub] != existing.get(sub) for sub in value):
                return True
        elif value != existing:
            return True
    return False
