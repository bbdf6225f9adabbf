"""Model binding package."""
from clause_runtime.models.declarations import (
    DeclarationKind,
    FieldDeclaration,
    ModelFile,
    TypeDeclaration,
)
from clause_runtime.models.factory import Factory, Introspector
from clause_runtime.models.manager import ModelManager
from clause_runtime.models.serializer import Serializer
from clause_runtime.models.validator import ResourceValidator
from clause_runtime.models.values import Relationship, TypedValue

__all__ = [
    "DeclarationKind",
    "Factory",
    "FieldDeclaration",
    "Introspector",
    "ModelFile",
    "ModelManager",
    "Relationship",
    "ResourceValidator",
    "Serializer",
    "TypeDeclaration",
    "TypedValue",
]
