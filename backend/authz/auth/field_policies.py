"""
Field-level read/write policies per resource type.

Semantics:
- ``read``: holder of ANY listed permission may read. Empty means no
  permission gate on reads.
- ``readable=False``: field is never returned, whatever the permissions
  (password hashes and similar secrets).
- ``write``: holder of ANY listed permission may write. Empty means the
  field is never writable (computed or system-managed).
- ``mask``: on denied read, replace the value with ``mask_value`` instead
  of dropping the key.

Fields without a policy are readable and writable. Resource types without a
policy table are a configuration error (see FieldPermissionFilter).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from authz.auth.permission_catalog import ALL_PERMISSIONS


@dataclass(frozen=True)
class FieldPolicy:
    read: frozenset[str] = frozenset()
    write: frozenset[str] = frozenset()
    mask: bool = False
    mask_value: Any = None
    readable: bool = True


def _policy(
    read: tuple[str, ...] = (),
    write: tuple[str, ...] = (),
    *,
    mask: bool = False,
    mask_value: Any = None,
    readable: bool = True,
) -> FieldPolicy:
    return FieldPolicy(
        read=frozenset(read),
        write=frozenset(write),
        mask=mask,
        mask_value=mask_value,
        readable=readable,
    )


FIELD_POLICIES: Final[dict[str, dict[str, FieldPolicy]]] = {
    "user": {
        "email": _policy(
            read=("users.view_own", "users.view_all", "users.view_sensitive"),
            write=("users.edit_own", "users.edit"),
        ),
        "role": _policy(
            read=("users.view_own", "users.view_all"),
            write=("users.change_role",),
        ),
        "password_hash": _policy(
            write=("users.edit_own", "users.edit"),
            readable=False,
        ),
    },
    "creator": {
        "stageName": _policy(
            read=("creators.view_own", "creators.view_all", "creators.view_public"),
            write=("creators.edit_own", "creators.edit_all"),
        ),
        "stripeAccountId": _policy(
            read=("creators.view_sensitive", "creators.view_own"),
            write=("creators.edit_own",),
            mask=True,
            mask_value="***",
        ),
        "totalEarnings": _policy(
            read=("creators.view_financial", "creators.view_own"),
            mask=True,
            mask_value=None,
        ),
    },
    "brand": {
        "companyName": _policy(
            read=("brands.view_own", "brands.view_all", "brands.view_public"),
            write=("brands.edit_own", "brands.edit_all"),
        ),
        "billingInfo": _policy(
            read=("brands.view_sensitive", "brands.view_own"),
            write=("brands.edit_own", "brands.edit_all"),
            mask=True,
            mask_value=None,
        ),
        "teamMembers": _policy(
            read=("brands.view_sensitive", "brands.view_own"),
            write=("brands.edit_own", "brands.edit_all"),
            mask=True,
            mask_value=[],
        ),
        "verificationStatus": _policy(
            read=("brands.view_own", "brands.view_all"),
            write=("brands.verify", "brands.reject"),
        ),
    },
    "license": {
        "feeCents": _policy(
            read=("licenses.view_financial", "licenses.view_own"),
            write=("licenses.edit_own", "licenses.edit_all"),
            mask=True,
            mask_value=None,
        ),
        "revShareBps": _policy(
            read=("licenses.view_financial", "licenses.view_own"),
            write=("licenses.edit_own", "licenses.edit_all"),
            mask=True,
            mask_value=None,
        ),
        "status": _policy(
            read=("licenses.view_own", "licenses.view_all"),
            write=("licenses.edit_own", "licenses.edit_all", "licenses.approve"),
        ),
    },
    "royalty": {
        "totalRevenueCents": _policy(
            read=("royalties.view_own", "royalties.view_all"),
            write=("royalties.edit",),
            mask=True,
            mask_value=None,
        ),
        "totalRoyaltiesCents": _policy(
            read=("royalties.view_own", "royalties.view_all"),
            write=("royalties.edit",),
            mask=True,
            mask_value=None,
        ),
    },
    "payout": {
        "amountCents": _policy(
            read=("payouts.view_own", "payouts.view_all"),
            write=("payouts.process",),
            mask=True,
            mask_value=None,
        ),
        "stripeTransferId": _policy(
            read=("payouts.view_own", "payouts.view_all"),
            mask=True,
            mask_value="***",
        ),
    },
}


def get_field_policies(resource_type: str) -> dict[str, FieldPolicy] | None:
    return FIELD_POLICIES.get(resource_type)


def _validate_field_policies() -> None:
    errors = []
    for resource_type, fields in FIELD_POLICIES.items():
        for field_name, policy in fields.items():
            unknown = (policy.read | policy.write) - ALL_PERMISSIONS
            if unknown:
                errors.append(
                    f"{resource_type}.{field_name} references unknown permissions: {sorted(unknown)}"
                )
    if errors:
        raise RuntimeError(
            "Field policy validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_field_policies()
