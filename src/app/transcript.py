"""
Claude transcript scanning.

Transcripts are JSON-Lines files, one conversation entry per line. The
autopilot only needs the last thing the assistant said, so the file is
walked from the end.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger("Transcript")

# Phrases of the registration prompt injected at agent launch
REGISTRATION_MARKERS = (
    "you are part of a team of agents",
    "register with the skwad",
    "list other agents names and project",
)

CONVERSATION_TYPES = ("user", "assistant")


def is_registration_prompt(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in REGISTRATION_MARKERS)


def message_text(entry: Dict[str, Any]) -> str:
    """Flatten the text content of a transcript entry."""
    message = entry.get("message")
    if not isinstance(message, dict):
        return ""

    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(part for part in parts if part).strip()
    return ""


def _message_id(entry: Dict[str, Any]) -> Optional[str]:
    message = entry.get("message")
    if isinstance(message, dict) and isinstance(message.get("id"), str):
        return message["id"]
    return None


def _entries_backwards(path: Path) -> Iterator[Dict[str, Any]]:
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            yield entry


def extract_last_assistant_message(path: Union[str, Path]) -> Optional[str]:
    """
    Find the most recent assistant text in a transcript.

    Args:
        path: Transcript file path

    Returns:
        The assistant text; an empty string when that text answers the
        registration prompt (nothing for the autopilot to look at); None when
        the file cannot be read or holds no assistant text.
    """
    try:
        entries = _entries_backwards(Path(path))
        last_message: Optional[str] = None
        last_message_id: Optional[str] = None

        for entry in entries:
            entry_type = entry.get("type")
            if entry_type not in CONVERSATION_TYPES:
                continue

            if last_message is None:
                if entry_type == "assistant":
                    text = message_text(entry)
                    if text:
                        last_message = text
                        last_message_id = _message_id(entry)
                continue

            # Earlier pieces of the same reply (thinking, tool use, split blocks)
            if entry_type == "assistant" and (
                not message_text(entry)
                or (last_message_id is not None and _message_id(entry) == last_message_id)
            ):
                continue

            # First conversation entry before the assistant reply
            if entry_type == "user" and is_registration_prompt(message_text(entry)):
                return ""
            return last_message

        return last_message
    except OSError as e:
        logger.warning(f"Failed to read transcript {path}: {e}")
        return None
