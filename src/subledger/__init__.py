"""
Subledger - billing subscription system of record.

Records the Stripe subscription state handed to it and answers whether a
user currently holds an active paid subscription. Every read and write runs
inside one atomic transaction.
"""

# Configures structlog on import
from subledger.logging import get_logger, setup_logging

__version__ = "1.0.0"

__all__ = ["__version__", "get_logger", "setup_logging"]
