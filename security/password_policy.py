import re
from typing import List, Tuple

from flask import current_app, has_app_context

_DIGIT = re.compile(r"\d")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_OTP = re.compile(r"^\d{6}$")

_DEFAULTS = {
    "PASSWORD_MIN_LEN": 8,
    "PASSWORD_MAX_LEN": 72,
    "PASSWORD_MAX_BYTES": 72,
    "PASSWORD_REQUIRE_DIGIT": True,
}


def _cfg(name: str):
    if not has_app_context():
        return _DEFAULTS[name]
    return current_app.config.get(name, _DEFAULTS[name])


def normalize_email(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and len(email) <= 256 and bool(_EMAIL.match(email))


def is_valid_otp_format(code) -> bool:
    return isinstance(code, str) and bool(_OTP.match(code))


def validate_password(pw: str) -> Tuple[bool, List[str]]:
    errors: List[str] = []

    if not isinstance(pw, str):
        return False, ["Password must be a string"]

    min_len = int(_cfg("PASSWORD_MIN_LEN"))
    max_len = int(_cfg("PASSWORD_MAX_LEN"))
    max_bytes = int(_cfg("PASSWORD_MAX_BYTES"))
    require_digit = bool(_cfg("PASSWORD_REQUIRE_DIGIT"))

    if len(pw) < min_len:
        errors.append(f"Password must be at least {min_len} characters")
    if len(pw) > max_len:
        errors.append(f"Password must be at most {max_len} characters")
    # bcrypt only takes 72 bytes; multi-byte characters count more than once
    elif len(pw.encode("utf-8")) > max_bytes:
        errors.append(f"Password must be at most {max_bytes} bytes")
    if require_digit and not _DIGIT.search(pw):
        errors.append("Password must include at least 1 number")

    return (len(errors) == 0), errors
