import logging

from ._internal.errors import ErrorInfo, MediaGenError
from .client import Client
from .inspector import ModelInspector
from .schema import SchemaAcquirer, SchemaCache
from .types import (
    GenerateResponse,
    GenerationRequest,
    ModelDescription,
    ModelInput,
    ModelParameter,
    OutputDescriptor,
    TargetModel,
)

logging.getLogger("nous.mediagen").addHandler(logging.NullHandler())

__all__ = [
    "Client",
    "ErrorInfo",
    "GenerateResponse",
    "GenerationRequest",
    "MediaGenError",
    "ModelDescription",
    "ModelInput",
    "ModelInspector",
    "ModelParameter",
    "OutputDescriptor",
    "SchemaAcquirer",
    "SchemaCache",
    "TargetModel",
]
