"""
Rule editor contract for conditional visibility.
Reads the rule stored on a field, lists the fields it may depend on, and
applies edited rules through the rule compiler and the schema store.
"""

import logging
from typing import Dict, Any, List, Optional, Union

from form_builder.exceptions import NotFoundError
from form_builder.models import (
    ConditionalVisibilityRule,
    FieldType,
    ParentFieldOption,
    VisibilityAction,
    VisibilityCondition,
)
from form_builder.rule_compiler import CompiledRule, RuleCompiler, coerce_rule, field_label
from form_builder.schema_store import SchemaStore
from form_builder.schema_tree import is_within, normalize_path

logger = logging.getLogger(__name__)


class RuleEditor:
    """Rule editing operations for the fields of one store."""

    def __init__(self, store: SchemaStore):
        self.store = store

    def _compiler(self) -> RuleCompiler:
        return RuleCompiler(self.store.schema)

    def _require(self, path: str):
        field = self.store.get_field(path)
        if field is None:
            raise NotFoundError(normalize_path(path))
        return field

    def current_rule(self, path: str) -> Optional[ConditionalVisibilityRule]:
        """
        Get the rule stored on a field.

        Args:
            path: Field path

        Returns:
            The rule, or None when the field has no conditional visibility rule
        """
        field = self._require(path)
        return self._compiler().decompile(field.reactions)

    def available_parents(self, path: str) -> List[ParentFieldOption]:
        """
        Fields a rule on ``path`` may depend on, in display order.

        The field itself, its descendants and display-only fields are excluded.
        """
        path = normalize_path(path)
        self._require(path)

        schema = self.store.schema
        candidates = []
        for candidate_path, field in self.store.get_ordered_fields():
            if is_within(candidate_path, path) or field.type == FieldType.VOID.value:
                continue
            candidates.append(ParentFieldOption(
                value=candidate_path,
                label=field_label(schema, candidate_path),
                type=field.type,
                options=list(field.enum) if field.enum else None,
            ))
        return candidates

    def default_rule(self, path: str) -> Optional[ConditionalVisibilityRule]:
        """Starting rule when conditional visibility is switched on for a field."""
        parents = self.available_parents(path)
        if not parents:
            return None
        return ConditionalVisibilityRule(
            parent_field=parents[0].value,
            condition=VisibilityCondition.HAS_VALUE.value,
            action=VisibilityAction.SHOW.value,
        )

    def compile(self, path: str, rule: Union[ConditionalVisibilityRule, Dict[str, Any]]) -> CompiledRule:
        """Compile a rule for ``path`` without storing it."""
        return self._compiler().compile(path, rule)

    def apply_rule(self, path: str,
                   rule: Optional[Union[ConditionalVisibilityRule, Dict[str, Any]]]) -> Optional[CompiledRule]:
        """
        Store a rule on a field, or remove it with None.

        Args:
            path: Field path
            rule: New rule, or None to remove the field's reaction

        Returns:
            The compiled rule, or None when the rule was removed

        Raises:
            NotFoundError: If the field does not exist
            SelfReferenceError: If the rule depends on the field itself
            DanglingReferenceError: If an enabled rule depends on a missing field
        """
        path = normalize_path(path)
        if rule is None:
            self._require(path)
            self.store.update_field(path, {'x-reactions': None})
            logger.info(f"Removed conditional visibility rule from '{path}'")
            return None

        compiled = self.compile(path, coerce_rule(rule))
        self.store.update_field(path, compiled.as_patch())
        if compiled.incomplete:
            logger.info(f"Stored incomplete rule on '{path}': {compiled.preview}")
        return compiled

    def preview(self, path: str) -> Optional[str]:
        rule = self.current_rule(path)
        if rule is None:
            return None
        return self._compiler().preview(rule)
