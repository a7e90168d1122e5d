"""Role model and authorization predicates used by the trust core.

Roles are a closed set. Every role is listed in ``_ROLE_CAPABILITIES`` so that
adding a member to :class:`Role` without deciding its capabilities fails the
import-time completeness check instead of quietly granting nothing.
"""

from __future__ import annotations

from enum import IntEnum


class Role(IntEnum):
    SALES = 10
    OPERATIONS = 20
    AUDIT = 30
    MANAGEMENT = 40
    ADMIN = 50


CAP_ELEVATED = "elevated"
CAP_READ_ONLY = "read_only"
CAP_REVIEW = "review"
CAP_SIGN = "sign"

_ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.SALES: frozenset(),
    Role.OPERATIONS: frozenset({CAP_ELEVATED, CAP_REVIEW}),
    Role.AUDIT: frozenset({CAP_READ_ONLY}),
    Role.MANAGEMENT: frozenset({CAP_ELEVATED, CAP_REVIEW, CAP_SIGN}),
    Role.ADMIN: frozenset({CAP_ELEVATED, CAP_REVIEW, CAP_SIGN}),
}

_missing = set(Role) - set(_ROLE_CAPABILITIES)
if _missing:
    raise RuntimeError(f"Roles without capability mapping: {sorted(r.name for r in _missing)}")


def parse_role(raw: object) -> Role:
    """Convert a stored or claimed role value; raises ``ValueError`` for unknown values."""
    if isinstance(raw, Role):
        return raw
    try:
        return Role(int(raw))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unknown role: {raw!r}") from exc


def _has(role: Role, capability: str) -> bool:
    return capability in _ROLE_CAPABILITIES[parse_role(role)]


def is_elevated(role: Role) -> bool:
    return _has(role, CAP_ELEVATED)


def is_read_only(role: Role) -> bool:
    return _has(role, CAP_READ_ONLY)


def can_review(role: Role) -> bool:
    return _has(role, CAP_REVIEW)


def can_sign(role: Role) -> bool:
    return _has(role, CAP_SIGN)
