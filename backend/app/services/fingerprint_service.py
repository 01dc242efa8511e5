# Overview: Service-layer operations for request fingerprinting; pure functions, no database work.

"""
Request Fingerprinting

WHY: Taps arrive from anonymous browsers. The (ip_hash, user_agent) pair is
a fuzzy matching key for clients that have not yet established a persistent
anonymous id. Raw IPs are never stored; only a salted one-way digest.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Mapping

from flask import current_app


# Checked before mobile: several tablets also advertise "mobile"-adjacent tokens
TABLET_SIGNALS = ("ipad", "tablet")
MOBILE_SIGNALS = (
    "mobile",
    "iphone",
    "ipod",
    "android",
    "webos",
    "blackberry",
    "opera mini",
    "iemobile",
)


@dataclass(frozen=True)
class ClientFingerprint:
    ip_hash: str | None
    user_agent: str | None
    accept_language: str | None
    referer: str | None
    device_hint: str


def hash_ip(ip: str, salt: str | None = None) -> str:
    """
    Salted SHA-256 digest of a raw IP address.

    Deterministic for the same (ip, salt) pair, so it can be used as a
    matching key; never reversible.
    """
    if salt is None:
        salt = current_app.config["IP_HASH_SALT"]
    return hashlib.sha256(f"{ip}:{salt}".encode("utf-8")).hexdigest()


def extract_client_ip(headers: Mapping[str, str] | None) -> str | None:
    """
    Client IP from proxy headers.

    Prefers the first X-Forwarded-For entry, then X-Real-IP. Returns None
    when neither carries a usable value; malformed headers never raise.
    """
    if not headers:
        return None

    forwarded = headers.get("X-Forwarded-For")
    if isinstance(forwarded, str) and forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("X-Real-IP")
    if isinstance(real_ip, str) and real_ip.strip():
        return real_ip.strip()

    return None


def derive_device_hint(user_agent: str | None) -> str:
    """
    Coarse device class from a user-agent string.

    A missing user agent is classified as desktop. Android without "mobile"
    is a tablet (Android phones always send "Mobile").
    """
    if not user_agent:
        return "desktop"
    ua = user_agent.lower()

    if any(signal in ua for signal in TABLET_SIGNALS) or ("android" in ua and "mobile" not in ua):
        return "tablet"

    if any(signal in ua for signal in MOBILE_SIGNALS):
        return "mobile"

    return "desktop"


def _header(headers: Mapping[str, str], name: str, max_length: int) -> str | None:
    value = headers.get(name)
    if not value:
        return None
    return value[:max_length]


def client_fingerprint(headers: Mapping[str, str]) -> ClientFingerprint:
    """Everything a tap records about the requesting client."""
    client_ip = extract_client_ip(headers)
    user_agent = _header(headers, "User-Agent", 512)
    return ClientFingerprint(
        ip_hash=hash_ip(client_ip) if client_ip else None,
        user_agent=user_agent,
        accept_language=_header(headers, "Accept-Language", 255),
        referer=_header(headers, "Referer", 1024),
        device_hint=derive_device_hint(user_agent),
    )
