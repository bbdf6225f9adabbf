"""
Clause Runtime

Execution layer for compiled smart legal contract logic:
validate -> box -> execute in a sandbox -> validate -> return.

Architecture:
- models/: schema engine binding (model files, serializer, validator, factory)
- logic/: logic unit, script repository, DSL compiler interface, call shapes
- boxing: wire JSON <-> boxed internal representation
- engine/: sandbox evaluators and the execution engine
"""

__version__ = "1.0.0"
