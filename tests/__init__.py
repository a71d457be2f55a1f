"""
Test suite for the MzansiCare Queue Service.

Contains unit and integration tests for the queue core and the API.
"""
import os

# Set environment for testing before the application is imported
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")
