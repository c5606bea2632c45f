"""
HTTP API сервиса подписок.
"""
