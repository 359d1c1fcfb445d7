"""Typed Models - record models, override chains and lazy record collections."""

from loguru import logger

from typed_models.conditions import CompoundCondition, Condition, ConditionField
from typed_models.config import OrmConfig
from typed_models.environment import Cache, Environment, new_environment, simulated_environment
from typed_models.errors import (
    CyclicFieldDependency,
    ModelMismatch,
    ORMError,
    RecordNotFound,
    RegistryFrozen,
    SecurityDenied,
    UnknownField,
    UnknownMethod,
    UnknownModel,
)
from typed_models.fields import (
    Boolean,
    Char,
    DateTime,
    Field,
    FieldInfo,
    FieldKind,
    FieldType,
    Float,
    Integer,
    Many2Many,
    Many2One,
    One2Many,
    Text,
)
from typed_models.logs import setup_logging
from typed_models.models import Model
from typed_models.onchange import OnchangeResult
from typed_models.parsing import ConditionParser
from typed_models.recordset import RecordCollection, convert_limit_to_int
from typed_models.registry import Registry
from typed_models.storage import StorageManager
from typed_models.transaction import Transaction

# Silent until the application calls setup_logging
logger.disable("typed_models")

__all__ = [
    # Main API
    "Registry",
    "Model",
    "Environment",
    "RecordCollection",
    "new_environment",
    "simulated_environment",
    "convert_limit_to_int",
    "OnchangeResult",
    # Fields
    "Field",
    "FieldInfo",
    "FieldKind",
    "FieldType",
    "Char",
    "Text",
    "Integer",
    "Float",
    "Boolean",
    "DateTime",
    "Many2One",
    "One2Many",
    "Many2Many",
    # Conditions
    "Condition",
    "CompoundCondition",
    "ConditionField",
    "ConditionParser",
    # Storage
    "StorageManager",
    "Transaction",
    "Cache",
    # Configuration
    "OrmConfig",
    "setup_logging",
    # Errors
    "ORMError",
    "UnknownModel",
    "UnknownField",
    "UnknownMethod",
    "ModelMismatch",
    "CyclicFieldDependency",
    "RecordNotFound",
    "SecurityDenied",
    "RegistryFrozen",
]

__version__ = "0.1.0"
