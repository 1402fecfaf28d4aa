"""
Structural validation of genetic datasets.

Datasets have no fixed schema. Validation only checks that the record is a
non-empty, serializable mapping whose well-known fields have the expected
container types, and reports every violation at once.
"""

from collections.abc import Mapping
from typing import Any, List

from .content_addressing import canonical_json
from ..errors import ValidationError

LIST_FIELDS = ("variants", "genes", "sequences", "phenotypes")
RECORD_LIST_FIELDS = ("variants", "genes")


def collect_violations(dataset: Any) -> List[str]:
    """
    List every rule the dataset breaks.

    Args:
        dataset: Candidate genetic dataset

    Returns:
        Human-readable violations (empty when valid)
    """
    if not isinstance(dataset, Mapping):
        return [f"dataset must be a mapping, got {type(dataset).__name__}"]

    violations: List[str] = []

    if not dataset:
        violations.append("dataset must not be empty")

    for key in dataset:
        if not isinstance(key, str):
            violations.append(f"field names must be strings, got {key!r}")

    for field in LIST_FIELDS:
        if field in dataset and not isinstance(dataset[field], list):
            violations.append(f"'{field}' must be a list, got {type(dataset[field]).__name__}")

    for field in RECORD_LIST_FIELDS:
        items = dataset.get(field)
        if isinstance(items, list):
            bad = [i for i, item in enumerate(items) if not isinstance(item, Mapping)]
            if bad:
                shown = ", ".join(str(i) for i in bad[:5])
                more = f" (+{len(bad) - 5} more)" if len(bad) > 5 else ""
                violations.append(f"'{field}' entries must be records; bad indexes: {shown}{more}")

    if "metadata" in dataset and not isinstance(dataset["metadata"], Mapping):
        violations.append(f"'metadata' must be a mapping, got {type(dataset['metadata']).__name__}")

    try:
        canonical_json(dataset)
    except (TypeError, ValueError) as e:
        violations.append(f"dataset must be JSON-serializable: {e}")

    return violations


def validate_genetic_data(dataset: Any):
    """
    Validate a dataset, failing fast with the full violation list.

    Raises:
        ValidationError: If any rule is broken
    """
    violations = collect_violations(dataset)
    if violations:
        raise ValidationError(violations, "Invalid genetic data")
