"""Upload validation: object key rules, size cap."""
from app.core.config import get_settings


def validate_object_key(key: str | None) -> str:
    """Return key unchanged if usable as an object key; raise ValueError otherwise.

    Keys are path-like and may contain slashes, but no empty, "." or ".." segments.
    """
    if key is None or key == "":
        raise ValueError("Object name is required")
    if "\x00" in key:
        raise ValueError("Object name must not contain NUL bytes")
    if key.startswith("/"):
        raise ValueError("Object name must not start with '/'")
    if any(seg in ("", ".", "..") for seg in key.split("/")):
        raise ValueError(f"Invalid object name: {key}")
    if len(key.encode()) > 1024:
        raise ValueError("Object name longer than 1024 bytes")
    return key


def resolve_object_key(explicit_key: str | None, filename: str | None) -> str:
    """Explicit key verbatim when non-empty, else the uploaded file's declared name."""
    if explicit_key:
        return validate_object_key(explicit_key)
    if not filename:
        raise ValueError("Uploaded file has no filename and no object name was given")
    return validate_object_key(filename)


def max_upload_bytes() -> int:
    return get_settings().max_upload_bytes


def exceeds_upload_limit(byte_size: int | None) -> bool:
    return byte_size is not None and byte_size > max_upload_bytes()
