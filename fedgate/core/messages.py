# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Localized user-facing messages.

Messages live in a nested dictionary keyed by path, with one template per
language at the leaves. Templates use positional ``str.format`` fields.
"""

from collections.abc import Sequence
from typing import Any

DEFAULT_LANGUAGE = "en"

MESSAGES: dict[str, Any] = {
    "messages": {
        "InternalServerError": {
            "en": "An internal error has occurred.\n(Error code: {0})",
            "ja": "インターナルエラーが発生しました。\n(エラーコード: {0})",
        },
        "ForbiddenCharacterError": {
            "en": "The parameter '{0}' contains a forbidden character.\n(Error code: {1})",
            "ja": "パラメータ '{0}' に使用できない文字が含まれています。\n(エラーコード: {1})",
        },
        "MissingParameterError": {
            "en": "The required parameter '{0}' is missing.\n(Error code: {1})",
            "ja": "必須パラメータ '{0}' が指定されていません。\n(エラーコード: {1})",
        },
        "InvalidParameterError": {
            "en": "The parameter '{0}' is invalid.\n(Error code: {1})",
            "ja": "パラメータ '{0}' が不正です。\n(エラーコード: {1})",
        },
        "TooLargeMessageError": {
            "en": "The message is too large.\n(Error code: {0})",
            "ja": "メッセージが大きすぎます。\n(エラーコード: {0})",
        },
        "InvalidRequestProtocolError": {
            "en": "The request protocol is invalid.\n(Error code: {0})",
            "ja": "リクエストのプロトコルが不正です。\n(エラーコード: {0})",
        },
    },
}


def parse_accept_language(header: str | None) -> list[str]:
    """
    Parse an Accept-Language header into languages ordered by preference.

    ``"ja-JP,ja;q=0.9,en;q=0.8"`` -> ``["ja-jp", "ja", "en"]``
    """
    if not header:
        return []

    weighted: list[tuple[float, int, str]] = []
    for index, part in enumerate(header.split(",")):
        pieces = part.strip().split(";")
        language = pieces[0].strip().lower()
        if not language:
            continue
        quality = 1.0
        for param in pieces[1:]:
            name, _, value = param.strip().partition("=")
            if name == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            weighted.append((-quality, index, language))

    return [language for _, _, language in sorted(weighted)]


class MessageCatalog:
    """
    Message lookup by key path and language preference.

    Usage:
        catalog = MessageCatalog()
        catalog.lookup(["messages", "InternalServerError"], ["ja-JP"], "0x80000001")
    """

    def __init__(
        self,
        messages: dict[str, Any] | None = None,
        default_language: str = DEFAULT_LANGUAGE,
    ):
        self._messages = messages if messages is not None else MESSAGES
        self.default_language = default_language

    def _resolve_language(self, templates: dict[str, str], languages: Sequence[str]) -> str | None:
        for language in languages:
            if language in templates:
                return language
            # ja-JP -> ja
            primary = language.split("-")[0]
            if primary in templates:
                return primary
        if self.default_language in templates:
            return self.default_language
        return None

    def lookup(self, keys: Sequence[str], languages: Sequence[str], *arguments: Any) -> str:
        """
        Return the message at ``keys`` in the first available language.

        Falls back to the default language, then to ``[key.path]``.
        """
        missing = f"[{'.'.join(keys)}]"

        node: Any = self._messages
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return missing
            node = node[key]

        if not isinstance(node, dict):
            return missing

        language = self._resolve_language(node, languages)
        if language is None:
            return missing

        template = node[language]
        try:
            return template.format(*arguments)
        except (IndexError, KeyError):
            return template


__all__ = [
    "DEFAULT_LANGUAGE",
    "MESSAGES",
    "MessageCatalog",
    "parse_accept_language",
]
