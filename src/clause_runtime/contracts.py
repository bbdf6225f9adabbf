"""Runtime contracts and data models."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContractOptions(BaseModel):
    """Code-generation hints passed to contract logic as its options record."""

    model_config = ConfigDict(populate_by_name=True)

    wrap_variables: bool = Field(
        default=False,
        alias="wrapVariables",
        description="Wrap variables when generating text",
    )
    template: bool = Field(
        default=False,
        description="Generate template text rather than contract text",
    )

    def to_record(self, options_class: str) -> dict[str, Any]:
        """
        Return the options as a wire JSON record.

        Args:
            options_class: Declared class of the options record

        Returns:
            JSON object carrying ``$class``
        """
        return {"$class": options_class, **self.model_dump(by_alias=True)}


class ValidateOptions(BaseModel):
    """Validation-mode hints applied when validating contract data."""

    model_config = ConfigDict(populate_by_name=True)

    convert_resources_to_id: bool = Field(
        default=False,
        alias="convertResourcesToId",
        description="Render embedded resources in relationship fields as bare identifiers",
    )
    convert_resources_to_relationships: bool = Field(
        default=False,
        alias="convertResourcesToRelationships",
        description="Render embedded resources in relationship fields as references",
    )
    permit_resources_for_relationships: bool = Field(
        default=True,
        alias="permitResourcesForRelationships",
        description="Permit embedded resources where a relationship is declared",
    )
    accept_resources_for_relationships: bool = Field(
        default=True,
        alias="acceptResourcesForRelationships",
        description="Accept embedded resources where a relationship is declared when parsing",
    )


class ExecutionConfig(BaseModel):
    """Per-operation configuration for engine calls."""

    now: datetime | str | None = Field(
        default=None,
        description="Definition of 'now'; defaults to the current time",
    )
    utc_offset: int | None = Field(
        default=None,
        description="UTC offset in minutes; defaults to the offset of 'now'",
    )
    options: ContractOptions = Field(default_factory=ContractOptions)
    validate_options: ValidateOptions = Field(default_factory=ValidateOptions)
    trace_id: str | None = Field(default=None, description="Trace ID for observability")


class TriggerResult(BaseModel):
    """Result of dispatching a request."""

    clause: str = Field(..., description="Contract identity")
    request: Any = Field(..., description="Original request, as given by the caller")
    response: Any = Field(default=None, description="Validated response")
    state: Any = Field(..., description="Validated new contract state")
    emit: list[Any] = Field(default_factory=list, description="Validated emitted events")


class InvokeResult(BaseModel):
    """Result of invoking a named clause."""

    clause: str = Field(..., description="Contract identity")
    params: Any = Field(..., description="Original parameters, as given by the caller")
    response: Any = Field(default=None, description="Validated response")
    state: Any = Field(..., description="Validated new contract state")
    emit: list[Any] = Field(default_factory=list, description="Validated emitted events")
