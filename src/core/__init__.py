# src/core/__init__.py
"""
Доменный слой (Core Domain).
Бизнес-логика подписок, независимая от транспорта.
"""
