import json
import threading
from unittest.mock import MagicMock

import pytest

from src.messaging.content import parse_draft_document, parse_message_type, starts_with_code_block, tag_code_language, to_plain_text
from src.messaging.errors import InvalidMessageContent, UnknownMessageType
from src.messaging.language import UNKNOWN_LANGUAGE, LanguageDetection, detect_language, try_detect_language
from src.models import MessageType


def document(*blocks):
    return json.dumps({"blocks": list(blocks), "entityMap": {}})


def block(text, block_type="unstyled", data=None):
    return {"key": text[:4] or "k", "type": block_type, "text": text, "data": data or {}}


def test_parse_message_type_accepts_known_types():
    assert parse_message_type("text") is MessageType.TEXT
    assert parse_message_type("draftjs") is MessageType.DRAFTJS
    assert parse_message_type("media") is MessageType.MEDIA


def test_parse_message_type_rejects_unknown():
    with pytest.raises(UnknownMessageType, match="Unknown message type"):
        parse_message_type("poll")


@pytest.mark.parametrize("body", ["", "not json", "[1, 2]", '{"blocks": "nope"}'])
def test_parse_draft_document_rejects_malformed_bodies(body):
    with pytest.raises(InvalidMessageContent):
        parse_draft_document(body)


def test_plain_text_joins_blocks_with_newlines():
    doc = json.loads(document(block("first"), block("second")))
    assert to_plain_text(doc) == "first\nsecond"


def test_only_a_leading_code_block_counts():
    assert starts_with_code_block(json.loads(document(block("x = 1", "code-block"))))
    assert not starts_with_code_block(json.loads(document(block("intro"), block("x = 1", "code-block"))))
    assert not starts_with_code_block({"blocks": []})


async def test_tag_replaces_existing_block_data():
    body = document(block("SELECT 1;", "code-block", data={"old": "value"}))

    tagged = json.loads(await tag_code_language(body, detector=MagicMock(return_value="SQL")))

    assert tagged["blocks"][0]["data"] == {"syntax": "sql"}
    assert tagged["entityMap"] == {}


async def test_tag_returns_original_body_without_code_block():
    body = document(block("hello there"))
    assert await tag_code_language(body, detector=MagicMock(return_value="Python")) == body


def test_detection_result_tag():
    assert LanguageDetection(language="JavaScript").tag == "javascript"
    assert LanguageDetection(language=UNKNOWN_LANGUAGE).tag is None
    assert LanguageDetection(error=RuntimeError("boom")).tag is None


async def test_try_detect_language_captures_errors():
    error = ValueError("cannot guess")

    result = await try_detect_language("x", detector=MagicMock(side_effect=error))

    assert result.language is None
    assert result.error is error


def test_detect_language_on_blank_text_is_unknown():
    assert detect_language("   \n") == UNKNOWN_LANGUAGE


def test_detect_language_recognizes_shebang_script():
    assert detect_language("#!/usr/bin/env python\nprint('hi')\n") == "Python"


async def test_detection_runs_off_the_event_loop_thread():
    seen = {}

    def detector(text):
        seen["thread"] = threading.get_ident()
        return "Python"

    result = await try_detect_language("print(1)", detector=detector)

    assert result.tag == "python"
    assert seen["thread"] != threading.get_ident()
