import re

from debateforum.database.models import Reference, ReferenceType, utcnow

# Evaluated top to bottom, first match wins.
_CLASSIFICATION_RULES = [
    (ReferenceType.ACADEMIC_PAPER, ("arxiv.org", "researchgate", ".edu/", "academic")),
    (ReferenceType.VIDEO, ("youtube.com", "vimeo.com", "ted.com")),
    (ReferenceType.NEWS_ARTICLE, ("news.", "reuters", "bbc", "cnn")),
    (ReferenceType.GOVERNMENT_DOCUMENT, ("gov", ".gov", "whitehouse")),
    (ReferenceType.BOOK, ("amazon.com", "books.google")),
]
_DOCUMENT_EXTENSION = re.compile(r"\.(pdf|doc|docx)$")


def classify(url: str | None) -> ReferenceType:
    """Map a reference URL to its category. Empty input is a plain website."""
    if not url:
        return ReferenceType.WEBSITE

    lower_url = url.lower()
    for reference_type, needles in _CLASSIFICATION_RULES:
        if any(needle in lower_url for needle in needles):
            return reference_type
    if _DOCUMENT_EXTENSION.search(lower_url):
        return ReferenceType.ACADEMIC_PAPER
    return ReferenceType.WEBSITE


def build_references(references_data: list[dict] | None) -> list[Reference]:
    """Turn submitted reference payloads into classified Reference rows."""
    return [
        Reference(
            type=classify(ref.get("url") or ""),
            title=ref["title"],
            url=ref.get("url"),
            author=ref.get("author"),
            publication=ref.get("publication"),
            published_at=ref.get("published_at"),
            accessed_at=ref.get("accessed_at") or utcnow(),
            notes=ref.get("notes"),
        )
        for ref in references_data or []
    ]
