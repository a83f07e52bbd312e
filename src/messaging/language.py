#language.py
"""Guesses the programming language of a code snippet."""
import asyncio
from typing import Callable, NamedTuple, Optional

import logging
from pygments.lexers import guess_lexer
from pygments.lexers.special import TextLexer
from pygments.util import ClassNotFound

logger = logging.getLogger("LanguageDetection")
logger.setLevel(logging.DEBUG)

UNKNOWN_LANGUAGE = "Unknown"

Detector = Callable[[str], str]


class LanguageDetection(NamedTuple):
    """Outcome of one detection attempt: a language, or the error that stopped it."""
    language: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def tag(self) -> Optional[str]:
        """Lowercase language name to tag with, or None when nothing usable was found."""
        if self.error is not None or not self.language or self.language == UNKNOWN_LANGUAGE:
            return None
        return self.language.lower()


def detect_language(plain_text: str) -> str:
    """Returns a language name such as 'Python', or 'Unknown'."""
    if not plain_text.strip():
        return UNKNOWN_LANGUAGE
    try:
        lexer = guess_lexer(plain_text)
    except ClassNotFound:
        return UNKNOWN_LANGUAGE
    if isinstance(lexer, TextLexer):
        return UNKNOWN_LANGUAGE
    return lexer.name


async def try_detect_language(plain_text: str, detector: Detector = detect_language) -> LanguageDetection:
    """
    Runs the detector in the default executor, since guessing scores the text
    against every lexer. Any exception becomes a failed LanguageDetection.
    """
    loop = asyncio.get_running_loop()
    try:
        return LanguageDetection(language=await loop.run_in_executor(None, detector, plain_text))
    except Exception as e:
        logger.error(f"Language detection failed: {e}", exc_info=True)
        return LanguageDetection(error=e)
