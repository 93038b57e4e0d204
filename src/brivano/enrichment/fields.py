"""Contact field sets and the completeness rule for enrichment."""

from typing import Any, Mapping, MutableMapping

# Every field a provider may contribute
ENRICHMENT_FIELDS = (
    "full_name",
    "email",
    "phone",
    "mobile_phone",
    "direct_phone",
    "job_title",
    "seniority_level",
    "department",
    "linkedin_url",
    "company_name",
    "company_linkedin_url",
    "employee_count",
    "annual_revenue",
    "industry",
    "founded_year",
    "headquarters_city",
    "headquarters_state",
)

# A record with all of these is complete and stops the waterfall
REQUIRED_FIELDS = ("full_name", "email", "phone")

# Reported as missing but never gating
NICE_TO_HAVE_FIELDS = ("job_title", "linkedin_url", "company_name")


def is_present(value: Any) -> bool:
    """Whether a field value counts as known (not None or blank)."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def missing_fields(fields: Mapping[str, Any]) -> list[str]:
    """Required and nice-to-have fields not yet known, required first."""
    return [
        name
        for name in REQUIRED_FIELDS + NICE_TO_HAVE_FIELDS
        if not is_present(fields.get(name))
    ]


def is_complete(fields: Mapping[str, Any]) -> bool:
    """Whether full name, email and phone are all present."""
    return all(is_present(fields.get(name)) for name in REQUIRED_FIELDS)


def empty_record() -> dict[str, Any]:
    return {name: None for name in ENRICHMENT_FIELDS}


def seed_record(known_fields: Mapping[str, Any]) -> dict[str, Any]:
    """Accumulator seeded from caller-supplied fields.

    Unknown keys are dropped and blank values are treated as missing.
    """
    record = empty_record()
    for name in ENRICHMENT_FIELDS:
        value = known_fields.get(name)
        if is_present(value):
            record[name] = value
    return record


def merge_missing(
    record: MutableMapping[str, Any],
    found: Mapping[str, Any],
) -> list[str]:
    """Fill-only-if-missing merge of ``found`` into ``record``.

    A field already present in the record is never overwritten.

    Returns:
        Names of the fields this merge filled, in field order.
    """
    filled = []
    for name in ENRICHMENT_FIELDS:
        value = found.get(name)
        if is_present(value) and not is_present(record.get(name)):
            record[name] = value
            filled.append(name)
    return filled
