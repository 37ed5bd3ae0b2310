"""Database models and utilities."""

from perfportal.db import models

__all__ = ["models"]
