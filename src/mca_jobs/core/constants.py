"""Central constants shared across the import/sync job stack."""

from typing import Final

# Import steps, in the order the wizard walks through them.
IMPORT_ORDER: Final[tuple[str, ...]] = (
    "user",
    "lender",
    "iso",
    "merchant",
    "syndicator",
    "advance",
)

# Sync steps. Lenders/ISOs/merchants must exist in the CRM before advances
# reference them.
SYNC_ORDER: Final[tuple[str, ...]] = (
    "lender",
    "iso",
    "merchant",
    "syndicator",
    "user",
    "underwriter",
    "representative",
    "advance",
)

# OrgMeter endpoint per importable entity type.
ORGMETER_ENDPOINTS: Final[dict[str, str]] = {
    "user": "user",
    "lender": "lender",
    "iso": "iso",
    "merchant": "merchant",
    "syndicator": "syndicator",
    "advance": "advance",
}

# Users embedded in a parent record, mirrored under their own entity type.
# parent entity type -> (field on the OrgMeter record, mirrored entity type)
NESTED_USER_LISTS: Final[dict[str, tuple[str, str]]] = {
    "lender": ("underwriterUsers", "underwriter"),
    "iso": ("salesRepUsers", "representative"),
}

# CRM collection each mirrored entity type is written to during sync.
CRM_COLLECTIONS: Final[dict[str, str]] = {
    "lender": "lender",
    "iso": "iso",
    "merchant": "merchant",
    "syndicator": "syndicator",
    "user": "user",
    "underwriter": "user",
    "representative": "representative",
    "advance": "funding",
}

# Fields tried, in order, to build a human readable label for an entity.
DESCRIPTOR_FIELDS: Final[tuple[str, ...]] = (
    "businessName",
    "businessDba",
    "name",
    "fullName",
    "email",
    "title",
)

CRM_SOURCE: Final[str] = "orgmeter"

# Record fields matched by the review search, per mirrored entity type.
REVIEW_SEARCH_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "user": ("username", "firstName", "lastName", "email"),
    "underwriter": ("firstName", "lastName", "email"),
    "representative": ("firstName", "lastName", "email"),
    "merchant": ("businessName", "businessDba"),
    "lender": ("name", "email"),
    "iso": ("name", "email"),
    "syndicator": ("name", "email"),
}
DEFAULT_REVIEW_SEARCH_FIELDS: Final[tuple[str, ...]] = ("name",)
