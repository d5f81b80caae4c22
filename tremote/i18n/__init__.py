"""Internationalization (i18n) support for tremote.

Provides translation functions and locale management. Catalogs are looked up
under ``tremote/i18n/locales/<lang>/LC_MESSAGES/tremote.mo``; when none is
installed the original English strings are returned.
"""

from __future__ import annotations

import gettext
import locale
import logging
import os
from pathlib import Path

# Default locale
DEFAULT_LOCALE = "en"

# Translation instance (lazy-loaded)
_translation: gettext.NullTranslations | None = None

logger = logging.getLogger(__name__)


def _is_valid_locale(locale_code: str) -> bool:
    """Check if locale code is valid and available.

    Args:
        locale_code: Locale code to validate

    Returns:
        True if locale is available, False otherwise

    """
    if not locale_code or not isinstance(locale_code, str):
        return False

    lang_code = locale_code.split("_")[0].lower()
    if lang_code == DEFAULT_LOCALE:
        return True

    locale_dir = Path(__file__).parent / "locales"
    mo_file = locale_dir / lang_code / "LC_MESSAGES" / "tremote.mo"
    return mo_file.exists()


def get_locale() -> str:
    """Get current locale from environment or system.

    Precedence order:
    1. TREMOTE_LOCALE environment variable
    2. LANG environment variable
    3. System locale
    4. Default locale ('en')

    Returns:
        Locale code (e.g., 'en', 'ru')

    """
    env_locale = os.environ.get("TREMOTE_LOCALE") or os.environ.get(
        "LANG", ""
    ).split(".")[0]

    if env_locale:
        locale_code = env_locale.split("_")[0].lower()
        if _is_valid_locale(locale_code):
            return locale_code
        logger.debug("Locale '%s' is not available, falling back", locale_code)

    system_locale = locale.getlocale()[0]
    if system_locale:
        locale_code = system_locale.split("_")[0].lower()
        if _is_valid_locale(locale_code):
            return locale_code

    return DEFAULT_LOCALE


def set_locale(locale_code: str) -> None:
    """Set the locale for translations.

    Args:
        locale_code: Language code (e.g., 'en', 'ru')

    Raises:
        ValueError: If locale code is empty

    """
    global _translation

    if not locale_code or not isinstance(locale_code, str):
        raise ValueError(f"Invalid locale code: {locale_code}")

    locale_code = locale_code.split("_")[0].lower()
    if not _is_valid_locale(locale_code):
        logger.warning(
            "Locale '%s' is not available, falling back to '%s'",
            locale_code,
            DEFAULT_LOCALE,
        )
        locale_code = DEFAULT_LOCALE

    _translation = None
    os.environ["TREMOTE_LOCALE"] = locale_code


def _get_translation() -> gettext.NullTranslations:
    """Get or create translation instance."""
    global _translation

    if _translation is None:
        locale_dir = Path(__file__).parent / "locales"
        _translation = gettext.translation(
            "tremote",
            localedir=str(locale_dir),
            languages=[get_locale()],
            fallback=True,
        )

    return _translation


def _(message: str) -> str:
    """Translate a message.

    Args:
        message: Message to translate

    Returns:
        Translated message (or original if translation not found)

    """
    return _get_translation().gettext(message)
