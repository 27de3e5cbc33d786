"""Local execution backend for running commands on the current machine."""

from .session import LocalSession

__all__ = ["LocalSession"]
