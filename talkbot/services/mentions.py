import re


def _mention_pattern(mention_name: str) -> re.Pattern:
    name = mention_name.strip()
    if not name.startswith("@"):
        name = f"@{name}"
    # "@edu" must not match inside "@educai" or "mail@edu.org"
    return re.compile(rf"(?<![\w@]){re.escape(name)}(?![\w-])", re.IGNORECASE)


def mentions(text: str, mention_name: str) -> bool:
    """True when the text addresses the given mention name."""
    if not text or not mention_name or not mention_name.strip().lstrip("@"):
        return False
    return _mention_pattern(mention_name).search(text) is not None


def strip_mention(text: str, mention_name: str) -> str:
    """Remove mentions of the persona and collapse whitespace, for parsing short answers."""
    if not mention_name or not mention_name.strip().lstrip("@"):
        return text.strip()
    cleaned = _mention_pattern(mention_name).sub(" ", text)
    return re.sub(r"\s+", " ", cleaned).strip(" ,:;")


def remove_mention(text: str, mention_name: str) -> str:
    """Remove the persona's mention token; the rest of the text is kept as written."""
    if not mention_name or not mention_name.strip().lstrip("@"):
        return text.strip()
    pattern = _mention_pattern(mention_name)
    return re.sub(rf"{pattern.pattern}[,:]?[ \t]*", "", text, flags=re.IGNORECASE).strip()
