def parse_text(content: str) -> dict[str, str | list[str]]:
    """
    Split a card message into its parts.

    `question | answer | tag1, tag2` (answer and tags optional), or
    question on the first line and answer on the following lines.

    returns: {'question': str, 'answer': str, 'tags': list[str]}
    """
    text = content.strip()

    if '|' in text:
        parts = [p.strip() for p in text.split('|', 2)]
        question = parts[0]
        answer = parts[1] if len(parts) > 1 else ''
        tags = process_tags(parts[2]) if len(parts) > 2 else []
        return {'question': question, 'answer': answer, 'tags': tags}

    if '\n' in text:
        lines = [l.strip() for l in text.split('\n') if l.strip()]
        if len(lines) >= 2:
            return {'question': lines[0], 'answer': '\n'.join(lines[1:]), 'tags': []}

    return {'question': text, 'answer': '', 'tags': []}


def process_tags(tags_text: str) -> list[str]:
    """Comma-separated text -> lowercase tags, deduplicated, first-seen order kept."""
    tags: list[str] = []
    for raw in tags_text.split(','):
        tag = raw.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[:max_len - 1] + '\u2026'
