"""Application services orchestrating trust state and letters."""

from lettertrust.app.letter_service import LetterService

__all__ = ["LetterService"]
