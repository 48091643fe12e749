import re

from debateforum.core.exceptions import ValidationError

MIN_ARGUMENT_LENGTH = 10
_TAG = re.compile(r"<[^>]*>")


def plain_text(content: str | None) -> str:
    """Strip markup tags and surrounding whitespace from rich-text content."""
    return _TAG.sub("", content or "").strip()


def ensure_argument_content(content: str | None) -> None:
    if len(plain_text(content)) < MIN_ARGUMENT_LENGTH:
        raise ValidationError(
            f"Each argument must have at least {MIN_ARGUMENT_LENGTH} characters of content"
        )
