"""Request validation and sanitization for code submissions.

The dangerous-pattern denylist is a heuristic run before anything is sent
to the judging backend. Isolation of untrusted code happens in the
backend sandbox, not here.
"""
import re
from dataclasses import asdict, dataclass
from typing import Any

from .languages import ALLOWED_LANGUAGES, is_allowed

DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern], ...] = tuple(
    (name, re.compile(pattern, re.IGNORECASE))
    for name, pattern in (
        ("eval", r"eval\s*\("),
        ("function-constructor", r"Function\s*\("),
        ("set-timeout", r"setTimeout\s*\("),
        ("set-interval", r"setInterval\s*\("),
        ("process-env", r"process\.env"),
        ("require", r"require\s*\("),
        ("dynamic-import", r"import\s*\("),
        ("fs-access", r"fs\."),
        ("child-process", r"child_process"),
        ("exec", r"exec\s*\("),
        ("spawn", r"spawn\s*\("),
        ("dunder-import", r"__import__\s*\("),
        ("subprocess", r"subprocess"),
        ("os-shell", r"os\.(system|popen)"),
        ("java-runtime-exec", r"Runtime\.getRuntime"),
    )
)

# Keys that could pollute object prototypes if the body were handed to JS
POLLUTING_KEYS = frozenset(["__proto__", "constructor", "prototype"])

# Headers a client can spoof to fake its address
SPOOFABLE_HEADERS = frozenset([b"x-forwarded-for", b"x-real-ip"])


@dataclass
class FieldError:
    field: str
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def find_dangerous_patterns(source_code: str) -> list[str]:
    """Return the names of every denylist rule matching ``source_code``."""
    return [name for name, pattern in DANGEROUS_PATTERNS if pattern.search(source_code)]


def _check_optional_text(payload: dict, field: str, label: str, max_size: int) -> list[FieldError]:
    if field not in payload or payload[field] is None:
        return []
    value = payload[field]
    if not isinstance(value, str):
        return [FieldError(field, f"{label} must be a string", value)]
    if len(value) > max_size:
        return [FieldError(field, f"{label} must be less than {max_size} characters", _excerpt(value))]
    return []


def _excerpt(value: str, limit: int = 200) -> str:
    return value if len(value) <= limit else value[:limit] + "..."


def validate_execution_request(
    payload: Any,
    max_code_size: int,
    max_stdin_size: int,
    code_field: str = "sourceCode",
) -> list[FieldError]:
    """Check a run request; every rule runs and all failures are returned."""
    if not isinstance(payload, dict):
        return [FieldError("body", "Request body must be a JSON object", None)]

    errors: list[FieldError] = []

    source_code = payload.get(code_field)
    if not isinstance(source_code, str):
        errors.append(FieldError(code_field, "Source code must be a string", source_code))
    else:
        if not 1 <= len(source_code) <= max_code_size:
            errors.append(FieldError(
                code_field,
                f"Source code must be between 1 and {max_code_size} characters",
                _excerpt(source_code),
            ))
        if find_dangerous_patterns(source_code):
            errors.append(FieldError(
                code_field,
                "Code contains potentially dangerous patterns",
                _excerpt(source_code),
            ))

    language = payload.get("language")
    if not isinstance(language, str):
        errors.append(FieldError("language", "Language must be a string", language))
    elif not is_allowed(language):
        errors.append(FieldError(
            "language",
            f"Invalid programming language. Allowed: {', '.join(sorted(ALLOWED_LANGUAGES))}",
            language,
        ))

    errors.extend(_check_optional_text(payload, "stdin", "Stdin", max_stdin_size))
    errors.extend(_check_optional_text(payload, "expectedOutput", "Expected output", max_stdin_size))
    return errors


def validate_test_cases(test_cases: Any, max_stdin_size: int, max_test_cases: int) -> list[FieldError]:
    if not isinstance(test_cases, list):
        return [FieldError("testCases", "testCases must be an array", None)]
    if len(test_cases) > max_test_cases:
        return [FieldError("testCases", f"At most {max_test_cases} test cases are allowed", len(test_cases))]

    errors: list[FieldError] = []
    for i, case in enumerate(test_cases):
        if not isinstance(case, dict):
            errors.append(FieldError(f"testCases[{i}]", "Test case must be an object", case))
            continue
        errors.extend(
            FieldError(f"testCases[{i}].{e.field}", e.message, e.value)
            for e in (
                _check_required_text(case, "input", "Test input", max_stdin_size)
                + _check_required_text(case, "expected", "Expected output", max_stdin_size)
            )
        )
    return errors


def _check_required_text(payload: dict, field: str, label: str, max_size: int) -> list[FieldError]:
    if payload.get(field) is None:
        return [FieldError(field, f"{label} is required", None)]
    return _check_optional_text(payload, field, label, max_size)


def sanitize_payload(data: Any) -> Any:
    """Drop prototype-polluting keys from a parsed JSON body, at any depth."""
    if isinstance(data, dict):
        return {k: sanitize_payload(v) for k, v in data.items() if k not in POLLUTING_KEYS}
    if isinstance(data, list):
        return [sanitize_payload(v) for v in data]
    return data


def strip_spoofable_headers(headers: list[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
    return [(k, v) for k, v in headers if k.lower() not in SPOOFABLE_HEADERS]
