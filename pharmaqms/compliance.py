# pharmaqms/compliance.py

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

COMPLYING = "COMPLYING"
NOT_COMPLYING = "NOT COMPLYING"


def _label(field: str) -> str:
    # camelCase and snake_case both read as "Title Case" in messages
    spaced = "".join(f" {c}" if c.isupper() else c for c in field).replace("_", " ")
    return spaced.strip().title()


def validate_record_data(data: Dict, required_fields: Iterable[str],
                         min_lengths: Optional[Mapping[str, int]] = None) -> Tuple[bool, List[str], List[str]]:
    """
    Validates a record payload for completeness before it is created.
    Returns (is_valid, errors, warnings); warnings never block submission.
    """
    errors = []
    warnings = []

    for field in required_fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()) or value == []:
            errors.append(f"Missing required field: {_label(field)}")

    for field, min_len in (min_lengths or {}).items():
        content = data.get(field, "")
        if content and len(str(content)) < min_len:
            warnings.append(f"'{_label(field)}' is very brief. Consider adding more detail for a robust record.")

    is_valid = not errors
    return is_valid, errors, warnings


def validate_score(value, name: str, low: int = 1, high: int = 10) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, int):
        return f"{name} must be a whole number between {low} and {high}."
    if not low <= value <= high:
        return f"{name} must be between {low} and {high}."
    return None


def compliance_statement(line_items: Iterable[Mapping]) -> str:
    """A lot complies only if every test line item reports status 'pass'."""
    return COMPLYING if all(item.get("status") == "pass" for item in line_items) else NOT_COMPLYING
