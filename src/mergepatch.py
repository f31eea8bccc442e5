"""
JSON Merge Patch (RFC 7386) helpers.

Status writes are expressed as a merge patch computed between a snapshot
taken at the start of a pass and the mutated status, so fields the pass did
not touch are left alone even if someone else changed them meanwhile.
"""

import copy
from typing import Any, Dict


def create_merge_patch(
    original: Dict[str, Any], modified: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Compute the merge patch that turns ``original`` into ``modified``.

    Nested objects are diffed recursively, keys missing from ``modified``
    become ``None`` (delete) and any other changed value, including lists,
    is replaced wholesale.

    Args:
        original: The document before mutation
        modified: The document after mutation

    Returns:
        The merge patch. Empty when both documents are equal.
    """
    patch: Dict[str, Any] = {}

    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
            continue

        old_value = original[key]
        if isinstance(old_value, dict) and isinstance(value, dict):
            nested = create_merge_patch(old_value, value)
            if nested:
                patch[key] = nested
        elif old_value != value:
            patch[key] = copy.deepcopy(value)

    for key in original:
        if key not in modified:
            patch[key] = None

    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """
    Apply a merge patch to a document and return the result.

    The target is not mutated.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)

    result = copy.deepcopy(target) if isinstance(target, dict) else {}

    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)

    return result
