from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Language:
    code: str
    name: str
    native_name: str


SUPPORTED_LANGUAGES: tuple[Language, ...] = (
    Language("en", "English", "English"),
    Language("hi", "Hindi", "हिन्दी"),
    Language("bn", "Bengali", "বাংলা"),
    Language("te", "Telugu", "తెలుగు"),
    Language("ta", "Tamil", "தமிழ்"),
    Language("gu", "Gujarati", "ગુજરાતી"),
    Language("mr", "Marathi", "मराठी"),
    Language("kn", "Kannada", "ಕನ್ನಡ"),
    Language("ml", "Malayalam", "മലയാളം"),
    Language("pa", "Punjabi", "ਪੰਜਾਬੀ"),
)

LEARNING_LEVELS = ("beginner", "intermediate", "advanced")

_BY_CODE = {lang.code: lang for lang in SUPPORTED_LANGUAGES}


def get_language(code: str) -> Language | None:
    return _BY_CODE.get(code.strip().lower())


def default_session_title(code: str) -> str:
    language = get_language(code)
    return f"{language.name if language else 'Chat'} Practice"
