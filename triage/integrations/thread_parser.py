"""
Ticket thread parser.

Turns a raw ticket body (HTML or plain text) into an ordered list of
messages:

    [{"actor_name", "actor_role", "content", "created_at"}, ...]

Messages are split on e-mail style reply boundaries (``---``,
``On <date>, <name> wrote:``, ``From:``/``Sent:``/``To:`` headers).
``actor_role`` is "agent" when the sender name looks like a support
agent and "customer" otherwise. Messages with a parsed date are returned
oldest first; undated messages keep their position.
"""

import html
import re
from datetime import timezone

from triage.utils.helpers import parse_datetime

_BLOCK_TAGS = [
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
    (re.compile(r"</?(p|div|blockquote)[^>]*>", re.IGNORECASE), "\n"),
    (re.compile(r"<hr\s*/?>", re.IGNORECASE), "\n---\n"),
]
_ANY_TAG = re.compile(r"<[^>]+>")

_BOUNDARIES = [
    re.compile(r"^---+\s*$", re.MULTILINE),
    re.compile(r"^___+\s*$", re.MULTILINE),
    re.compile(r"(?=^On\s+.+?wrote:\s*$)", re.MULTILINE),
    re.compile(r"(?=^From:\s+.+$)", re.MULTILINE),
]

_ON_WROTE = re.compile(r"^On\s+(.+),\s+(.+?)\s+wrote:\s*$", re.IGNORECASE)

AGENT_NAME_PATTERNS = (
    "support", "team", "tse", "technician", "engineer",
    "agent", "help", "customer service",
)


def clean_html(raw):
    text = raw
    for pattern, repl in _BLOCK_TAGS:
        text = pattern.sub(repl, text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    return re.sub(r"\n{3,}", "\n\n", text)


def split_messages(text):
    chunks = [text]
    for pattern in _BOUNDARIES:
        split = []
        for chunk in chunks:
            parts = pattern.split(chunk)
            if len(parts) > 1:
                split.extend(p for p in parts if p.strip())
            else:
                split.append(chunk)
        if len(split) > len(chunks):
            chunks = split
    chunks = [c for c in chunks if c.strip()]
    return chunks or [text]


def _parse_chunk(chunk):
    lines = [line.strip() for line in chunk.strip().split("\n")]
    actor_name = None
    created_at = None
    start = 0
    for i, line in enumerate(lines[:5]):
        match = _ON_WROTE.match(line)
        if match:
            created_at = parse_datetime(match.group(1))
            actor_name = match.group(2).strip()
            start = i + 1
            break
        if line.startswith("From:"):
            actor_name = line[len("From:"):].strip()
        elif line.startswith("Sent:"):
            created_at = parse_datetime(line[len("Sent:"):].strip())
        elif not line.startswith("To:"):
            break
        start = i + 1

    content = "\n".join(lines[start:]).strip()
    role = "customer"
    if actor_name and any(p in actor_name.lower() for p in AGENT_NAME_PATTERNS):
        role = "agent"
    return {
        "actor_name": actor_name,
        "actor_role": role,
        "content": content or chunk.strip(),
        "created_at": created_at,
    }


def parse_thread(raw_body):
    """Parse a raw ticket thread into messages, oldest first."""
    if not raw_body or not isinstance(raw_body, str):
        return []
    messages = [_parse_chunk(c) for c in split_messages(clean_html(raw_body))]
    if all(m["created_at"] for m in messages):
        messages.sort(key=lambda m: m["created_at"].astimezone(timezone.utc))
    return messages
