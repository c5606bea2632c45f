# src/common/localization.py
"""
Модуль локализации.
Тексты уведомлений о подписках хранятся в config/lang_dict.json.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any


def get_lang_dict_path() -> Path:
    """Возвращает путь к файлу локализации."""
    return Path(__file__).parent.parent.parent / "config" / "lang_dict.json"


@lru_cache()
def load_lang_dict() -> dict[str, dict[str, str]]:
    """
    Загружает словарь локализации из JSON файла.

    Returns:
        Словарь вида {KEY: {lang: text}}
    """
    lang_path = get_lang_dict_path()
    if not lang_path.exists():
        raise FileNotFoundError(f"Файл локализации не найден: {lang_path}")

    with open(lang_path, "r", encoding="utf-8") as f:
        return json.load(f)


def get_text(
    key: str,
    lang: str = "ru",
    default: str | None = None,
    **kwargs: Any,
) -> str:
    """
    Получает локализованный текст по ключу.

    Порядок поиска: запрошенный язык, затем русский, затем любой доступный.
    Отсутствующие параметры форматирования оставляют шаблон как есть.

    Example:
        >>> get_text("SUBSCRIPTION_EXPIRING_TITLE", "ru")
        'Срок подписки подходит к концу'
    """
    try:
        translations = load_lang_dict().get(key)
    except FileNotFoundError:
        translations = None

    if not translations:
        return default if default is not None else f"[{key}]"

    text = translations.get(lang) or translations.get("ru") or next(iter(translations.values()))

    if kwargs:
        try:
            text = text.format(**kwargs)
        except KeyError:
            pass

    return text
