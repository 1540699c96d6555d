"""
Data Collectors - Fetch governance data from the Postman API

Collectors run once per scheduled cycle; results feed the governance
calculator and are stored in SQLite.
"""

__all__: list[str] = []
