"""
Feature Flags Configuration

Centralized switches for the certification backend.
All flags are loaded from environment variables (a local .env is honoured).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the certification workflow.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Publish certification.changed events after successful transitions
    FEATURE_CERTIFICATION_EVENTS: bool = get_bool_env('FEATURE_CERTIFICATION_EVENTS', True)

    # Bulk reset also clears is_locked/locked_at on scores in scope
    FEATURE_RESET_UNLOCKS_SCORES: bool = get_bool_env('FEATURE_RESET_UNLOCKS_SCORES', True)

    # Echo SQL statements from the engine
    DB_ECHO: bool = get_bool_env('DB_ECHO', False)
