"""Tests for locale selection and the translation hook."""

from __future__ import annotations

import pytest

import tremote.i18n as i18n

pytestmark = [pytest.mark.unit]


@pytest.fixture(autouse=True)
def _reset_translation(monkeypatch):
    monkeypatch.delenv("TREMOTE_LOCALE", raising=False)
    monkeypatch.setattr(i18n, "_translation", None)


def test_env_locale_wins(monkeypatch):
    monkeypatch.setenv("TREMOTE_LOCALE", "en_GB.UTF-8")
    assert i18n.get_locale() == "en"


def test_unavailable_locale_falls_back(monkeypatch):
    i18n.set_locale("xx_YY")
    assert i18n.get_locale() == i18n.DEFAULT_LOCALE


def test_set_locale_rejects_empty():
    with pytest.raises(ValueError):
        i18n.set_locale("")


def test_untranslated_message_is_returned_unchanged():
    i18n.set_locale("en")
    assert i18n._("Trust this certificate?") == "Trust this certificate?"
