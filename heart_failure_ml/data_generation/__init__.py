"""Synthetic heart failure clinical records."""

from .generate_heart_failure_data import HeartFailureDataGenerator

__all__ = ['HeartFailureDataGenerator']
