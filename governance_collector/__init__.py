"""
Postman Governance Collector

Collects Postman workspace, collection and user metadata, scores API
governance compliance and stores the results in SQLite for dashboards.

Package Structure:
    - core: Infrastructure (logging, sanitization, run tracking)
    - domain: Domain models (snapshot, metrics, violations)
    - collectors: Postman API client
    - governance: Scoring and violation rules
    - utils: Error handling helpers
"""

__version__ = "1.0.0"
__author__ = "API Governance Team"
