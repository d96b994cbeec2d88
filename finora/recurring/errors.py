"""Exceptions raised by the recurring transactions engine."""


class RecurringError(Exception):
    """Base exception for the recurring engine."""
    pass


class TemplateValidationError(RecurringError):
    """Template data is malformed and cannot be evaluated."""

    def __init__(self, template_id: str, issues: list[str]):
        self.template_id = template_id
        self.issues = issues
        super().__init__(f"Template {template_id} is invalid: {'; '.join(issues)}")


class StoreTimeoutError(RecurringError):
    """A store call did not finish within the configured bound."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Store call '{operation}' timed out after {timeout:g}s")
