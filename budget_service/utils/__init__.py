"""
Budget Service Utilities Package
"""

from budget_service.utils.pagination import validate_page_params
from budget_service.utils.retry_logic import RetryError, RetryPolicy, retry_with_backoff

__all__ = ["RetryError", "RetryPolicy", "retry_with_backoff", "validate_page_params"]
