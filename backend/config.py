"""
Centralized environment configuration

Values come from the process environment (main.py loads a .env file
first). Every key has a default so the service starts with no setup.
"""

import os
from typing import Optional

def _get_optional(value: Optional[str], default: str) -> str:
    return value if value else default

def _get_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value else default
    except ValueError:
        return default

# SQL dialect used to parse and syntax-check SQL
SQL_DIALECT = _get_optional(os.getenv('SQL_DIALECT'), 'databricks')

# Catalog service used to enrich tables with column metadata
CATALOG_API_URL = _get_optional(os.getenv('CATALOG_API_URL'), 'http://localhost:3000')
CATALOG_TIMEOUT_SECONDS = _get_float(os.getenv('CATALOG_TIMEOUT_SECONDS'), 10.0)

# Debug flags
TRANSPILER_DEBUG = os.environ.get('TRANSPILER_DEBUG', 'False').lower() == 'true'
