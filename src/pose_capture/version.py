"""Version information for the pose capture package."""

APP_VERSION = "0.3.0"

__all__ = ["APP_VERSION"]
