#content.py
"""
Content Classifier

Helpers for the three message types. Rich-text ("draftjs") bodies are
serialized Draft.js raw documents: {"blocks": [...], "entityMap": {...}},
where each block has at least "type" and "text" and optionally "data".
"""
import json
from typing import Any, Dict, Optional

import logging
from src.messaging.errors import InvalidMessageContent, UnknownMessageType
from src.messaging.language import Detector, detect_language, try_detect_language
from src.models import MessageType

logger = logging.getLogger("ContentClassifier")
logger.setLevel(logging.DEBUG)

CODE_BLOCK = "code-block"


def parse_message_type(value: str) -> MessageType:
    try:
        return MessageType(value)
    except ValueError:
        raise UnknownMessageType("Unknown message type")


def parse_draft_document(body: str) -> Dict[str, Any]:
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        raise InvalidMessageContent("Rich text messages must contain a valid document.")
    if not isinstance(document, dict) or not isinstance(document.get("blocks", []), list):
        raise InvalidMessageContent("Rich text messages must contain a valid document.")
    return document


def to_plain_text(document: Dict[str, Any]) -> str:
    return "\n".join(str(block.get("text", "")) for block in document.get("blocks") or [])


def starts_with_code_block(document: Dict[str, Any]) -> bool:
    blocks = document.get("blocks") or []
    return bool(blocks) and isinstance(blocks[0], dict) and blocks[0].get("type") == CODE_BLOCK


async def tag_code_language(body: str, detector: Detector = detect_language) -> str:
    """
    Returns `body` with the language of a leading code block recorded as
    blocks[0].data = {"syntax": <lowercase name>}. The original body comes back
    untouched when there is no leading code block or nothing was detected.
    """
    document = parse_draft_document(body)
    if not starts_with_code_block(document):
        return body

    logger.debug("Code message found, trying to detect language.")
    detection = await try_detect_language(to_plain_text(document), detector)
    syntax: Optional[str] = detection.tag
    if syntax is None:
        return body

    logger.debug(f"Code message language is {syntax}.")
    document["blocks"][0]["data"] = {"syntax": syntax}
    return json.dumps(document)
