"""
Workspace agent memory: ingestion, retrieval and behavioral profiles.
"""

# Setup logging configuration on package import
from .utils.logging_config import setup_logging

setup_logging()
