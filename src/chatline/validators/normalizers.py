"""
Small, pure normalization helpers shared by settings validators and request schemas.
"""


def to_uppercase(value: str | None) -> str | None:
    """Uppercase a string, passing None through."""
    return value.upper() if value is not None else None


def to_lowercase(value: str | None) -> str | None:
    """Lowercase a string, passing None through."""
    return value.lower() if value is not None else None


def normalize_message_content(value: str, max_length: int) -> str:
    """
    Strip surrounding whitespace from a message body and enforce length bounds.

    Raises:
        ValueError: if the stripped content is empty or longer than `max_length`.
            Pydantic turns this into a request validation error.
    """
    content = value.strip()
    if not content:
        raise ValueError("Message cannot be empty")
    if len(content) > max_length:
        raise ValueError(f"Message too long (maximum {max_length} characters)")
    return content


def normalize_title(value: str | None, max_length: int = 200) -> str | None:
    """Strip a conversation title; blank titles become None."""
    if value is None:
        return None
    title = value.strip()
    if not title:
        return None
    return title[:max_length]
