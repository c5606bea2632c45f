"""
Код, общий для API и планировщика.

Модули:
- models: модели ответов HTTP API (пагинация, ошибки, health)
"""

__all__: list[str] = []
