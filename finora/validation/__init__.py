"""Validation package."""

from finora.validation.validator import TemplateValidator

__all__ = ["TemplateValidator"]
