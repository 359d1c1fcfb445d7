"""Exceptions raised by the typed_models runtime."""

from __future__ import annotations


class ORMError(Exception):
    """Base class for all typed_models errors."""


class UnknownModel(ORMError, KeyError):
    """A model name is not declared in the registry."""

    def __init__(self, model_name: str) -> None:
        super().__init__(f"Model '{model_name}' not found")
        self.model_name = model_name

    def __str__(self) -> str:
        return self.args[0]


class UnknownField(ORMError, KeyError):
    """A field name is not declared on a model."""

    def __init__(self, model_name: str, field_name: str) -> None:
        super().__init__(f"Field '{field_name}' not found in model '{model_name}'")
        self.model_name = model_name
        self.field_name = field_name

    def __str__(self) -> str:
        return self.args[0]


class UnknownMethod(ORMError, AttributeError):
    """No implementation is registered for a method name."""

    def __init__(self, model_name: str, method_name: str, reason: str = "") -> None:
        message = f"Method '{method_name}' not found in model '{model_name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.model_name = model_name
        self.method_name = method_name


class ModelMismatch(ORMError, TypeError):
    """Set algebra between collections of different models."""

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"Cannot combine records of '{left}' with records of '{right}'")
        self.left = left
        self.right = right


class CyclicFieldDependency(ORMError, ValueError):
    """Computed field dependencies form a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__("Cyclic field dependency: " + " -> ".join(cycle))
        self.cycle = cycle


class RecordNotFound(ORMError, LookupError):
    """A record id does not exist (or was deleted) in its model's table."""

    def __init__(self, model_name: str, ids: list[int]) -> None:
        super().__init__(f"Records not found in '{model_name}': {ids}")
        self.model_name = model_name
        self.ids = ids


class SecurityDenied(ORMError, PermissionError):
    """The access checker refused an operation."""

    def __init__(self, model_name: str, operation: str, uid: int) -> None:
        super().__init__(f"User {uid} may not {operation} '{model_name}'")
        self.model_name = model_name
        self.operation = operation
        self.uid = uid


class RegistryFrozen(ORMError, RuntimeError):
    """Registration attempted after the registry was bootstrapped."""
