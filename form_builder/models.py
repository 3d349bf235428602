"""
Pydantic models for the form schema builder.
Defines the schema tree nodes, conditional visibility rules, compiled
reactions, field blueprints and history entries.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)


class FieldType(str, Enum):
    """Closed set of field kinds a schema node can have."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    DATE = "date"
    DATETIME = "datetime"
    OBJECT = "object"
    ARRAY = "array"
    VOID = "void"


CONTAINER_TYPES = {FieldType.OBJECT.value, FieldType.ARRAY.value}


class VisibilityCondition(str, Enum):
    HAS_VALUE = "hasValue"
    IS_EMPTY = "isEmpty"
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"


# Conditions that compare against targetValue
VALUE_CONDITIONS = {VisibilityCondition.EQUALS.value, VisibilityCondition.NOT_EQUALS.value}


class VisibilityAction(str, Enum):
    SHOW = "show"
    HIDE = "hide"
    DISABLE = "disable"


class ReactionIssue(str, Enum):
    """Flags surfaced to the editor alongside a compiled reaction."""
    INCOMPLETE_RULE = "incomplete_rule"
    DANGLING_REFERENCE = "dangling_reference"
    SELF_REFERENCE = "self_reference"


class EnumOption(BaseModel):
    """One selectable option of a choice field. The value may be null."""
    model_config = ConfigDict(frozen=True)

    label: str
    value: Any


class _SchemaNode(BaseModel):
    """
    Frozen base for everything stored in the schema tree.

    History snapshots share these objects, so they are never changed in place;
    edits go through ``model_copy(update=...)``. Serialization leaves out the
    model's own attributes that are unset (None) but keeps nulls inside extras
    and enum options, which are document data.
    """
    model_config = ConfigDict(frozen=True)

    @model_serializer(mode="wrap")
    def _omit_unset_attributes(self, handler: SerializerFunctionWrapHandler) -> Dict[str, Any]:
        data = handler(self)
        for name, info in type(self).model_fields.items():
            if getattr(self, name) is None:
                data.pop(name, None)
                if info.alias:
                    data.pop(info.alias, None)
        return data


class ConditionalVisibilityRule(_SchemaNode):
    """
    Human-authored rule that makes a field depend on another field.

    targetValue is only kept for equals/notEquals conditions.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=True)

    parent_field: str = Field(default="", alias="parentField")
    condition: VisibilityCondition = VisibilityCondition.HAS_VALUE.value
    target_value: Optional[Any] = Field(default=None, alias="targetValue")
    action: VisibilityAction = VisibilityAction.SHOW.value
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _drop_unused_target_value(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        condition = data.get("condition", VisibilityCondition.HAS_VALUE.value)
        if isinstance(condition, Enum):
            condition = condition.value
        if condition not in VALUE_CONDITIONS:
            data = {key: value for key, value in data.items() if key not in ("targetValue", "target_value")}
        return data

    @property
    def needs_target_value(self) -> bool:
        return self.condition in VALUE_CONDITIONS

    @property
    def is_incomplete(self) -> bool:
        """True for equals/notEquals rules that have no value to compare with yet."""
        return self.needs_target_value and self.target_value in (None, "")

    def behavior_key(self) -> Tuple[str, str, str, Any]:
        """Fields that determine the compiled behaviour of the rule."""
        return (self.condition, self.action, self.parent_field, self.target_value)


class ConditionalReaction(_SchemaNode):
    """
    Compiled artifact stored on a field under ``x-reactions``.

    ``fulfill`` follows the renderer's shape: ``{"state": {"visible": "{{...}}"}}``.
    The source rule is kept under ``_conditionalVisibility`` for round-trip editing.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    dependencies: List[str] = Field(default_factory=list)
    fulfill: Dict[str, Any] = Field(default_factory=dict)
    rule: Optional[ConditionalVisibilityRule] = Field(default=None, alias="_conditionalVisibility")
    issues: Optional[List[str]] = None

    @property
    def state(self) -> Dict[str, Any]:
        return self.fulfill.get("state", {}) or {}

    def has_issue(self, issue: str) -> bool:
        return bool(self.issues) and issue in self.issues


class SchemaProperty(_SchemaNode):
    """
    One node of the schema tree.

    The node's key lives in its parent's ``properties`` map. Array fields keep
    their children in ``items.properties``. Unknown attributes (renderer
    metadata such as ``x-component``) are preserved as extras.
    """
    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        use_enum_values=True,
    )

    type: FieldType = FieldType.STRING.value
    title: Optional[str] = None
    description: Optional[str] = None
    enum: Optional[List[EnumOption]] = None
    order: Optional[int] = Field(default=None, alias="x-index")
    reactions: Optional[ConditionalReaction] = Field(default=None, alias="x-reactions")
    properties: Optional[Dict[str, "SchemaProperty"]] = None
    items: Optional["SchemaProperty"] = None

    @field_validator("enum", mode="before")
    @classmethod
    def _coerce_enum_options(cls, v):
        # Plain value lists are accepted and expanded to label/value pairs
        if v is None:
            return v
        if not isinstance(v, list):
            raise ValueError("enum must be a list of options")
        options = []
        for option in v:
            if isinstance(option, (dict, EnumOption)):
                options.append(option)
            else:
                options.append({"label": str(option), "value": option})
        return options

    @property
    def is_container(self) -> bool:
        return self.type in CONTAINER_TYPES

    @property
    def rule(self) -> Optional[ConditionalVisibilityRule]:
        return self.reactions.rule if self.reactions else None

    def enum_values(self) -> Optional[List[Any]]:
        if not self.enum:
            return None
        return [option.value for option in self.enum]


SchemaProperty.model_rebuild()


class FieldBlueprint(BaseModel):
    """Palette entry describing the default shape of a new field."""
    model_config = ConfigDict(populate_by_name=True)

    key: str
    name: str
    category: str = "form"
    description: str = ""
    default_schema: Dict[str, Any] = Field(default_factory=dict, alias="defaultSchema")

    @field_validator("default_schema")
    @classmethod
    def _check_default_schema(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        SchemaProperty.model_validate(v)
        return v

    def build_field(self) -> SchemaProperty:
        """Materialize a new, unpositioned field from the default schema."""
        data = copy.deepcopy(self.default_schema)
        data.pop("x-index", None)
        data.pop("order", None)
        return SchemaProperty.model_validate(data)


@dataclass(frozen=True)
class HistoryEntry:
    """
    Immutable record of one store mutation.

    ``before`` is the schema as it was before the mutation, ``after`` the
    schema it produced. Both are never mutated once recorded.
    """
    action: str
    before: SchemaProperty
    after: SchemaProperty
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ParentFieldOption:
    """A field a rule can depend on, as offered to the rule editor."""
    value: str
    label: str
    type: str
    options: Optional[List[EnumOption]] = None

    @property
    def has_options(self) -> bool:
        return bool(self.options)


def empty_schema() -> SchemaProperty:
    """Return a new empty root schema."""
    return SchemaProperty(type=FieldType.OBJECT.value, properties={})
