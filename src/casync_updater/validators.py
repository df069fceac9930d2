"""
Local path validation for replica operations.

Checks the preconditions of extract and make before any subprocess is
started, so that a misconfigured destination is reported as an operator
error instead of a casync failure.
"""

from pathlib import Path

# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Destination")
        reason: Description of validation failure (e.g., "does not exist")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_destination_dir(path: str | Path) -> tuple[bool, str]:
    """
    Validate an extraction target.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Must exist
        - Must be a directory
    """
    target = Path(path)
    if not target.exists():
        return (
            False,
            format_validation_error(
                f"Destination '{target}'", "does not exist"
            ),
        )
    if not target.is_dir():
        return (
            False,
            format_validation_error(
                f"Destination '{target}'", "is not a directory"
            ),
        )
    return (True, "")


def validate_source_dir(path: str | Path) -> tuple[bool, str]:
    """
    Validate an archive source directory.

    Validation rules:
        - Must exist and be a directory
        - Must contain at least one entry
    """
    source = Path(path)
    if not source.is_dir():
        return (
            False,
            format_validation_error(
                f"Source '{source}'", "is not an existing directory"
            ),
        )
    if not any(source.iterdir()):
        return (
            False,
            format_validation_error(f"Source '{source}'", "is empty"),
        )
    return (True, "")


def validate_index_parent(index: str | Path) -> tuple[bool, str]:
    """
    Validate that the directory holding an archive index exists.
    """
    parent = Path(index).parent
    if not parent.is_dir():
        return (
            False,
            format_validation_error(
                f"Index directory '{parent}'", "does not exist"
            ),
        )
    return (True, "")
