"""
Conditional visibility rule compiler for the form schema builder.

Turns a structured rule (parent field, condition, action, optional target
value) into a dependency-tracked reaction the form renderer evaluates, turns
saved reactions back into rules for editing, and evaluates reactions against
form values.

Expressions are small immutable trees. They serialize to the renderer's
template syntax, e.g. ``{{$deps[0] === "approved"}}``, where ``$deps[0]`` is
the current value of the rule's single dependency. The ``hide`` action wraps
the base expression in one ``Not`` node, so ``show`` and ``hide`` always
evaluate to opposite booleans.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Dict, Any, List, Mapping, Optional, Sequence, Union

from form_builder.exceptions import DanglingReferenceError, NotFoundError, SelfReferenceError
from form_builder.models import (
    ConditionalReaction,
    ConditionalVisibilityRule,
    EnumOption,
    ReactionIssue,
    SchemaProperty,
    VisibilityAction,
    VisibilityCondition,
)
from form_builder.schema_tree import OrderedFields, leaf_key, normalize_path, parent_path, resolve

logger = logging.getLogger(__name__)

RuleLike = Union[ConditionalVisibilityRule, Dict[str, Any]]
ReactionLike = Union[ConditionalReaction, Dict[str, Any]]

CONDITION_PHRASES = {
    VisibilityCondition.HAS_VALUE.value: 'has a value',
    VisibilityCondition.IS_EMPTY.value: 'is empty',
    VisibilityCondition.EQUALS.value: 'equals "{value}"',
    VisibilityCondition.NOT_EQUALS.value: 'does not equal "{value}"',
}

ACTION_PHRASES = {
    VisibilityAction.SHOW.value: 'show this field',
    VisibilityAction.HIDE.value: 'hide this field',
    VisibilityAction.DISABLE.value: 'disable this field',
}


# =============================================================================
# Run-time value semantics
# =============================================================================

def is_truthy(value: Any) -> bool:
    """
    Truthiness as the form renderer's expression language defines it.

    Empty strings, zero, NaN, None and False are falsy. Lists and mappings are
    truthy even when empty.
    """
    if value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return not (value == 0 or (isinstance(value, float) and math.isnan(value)))
    if isinstance(value, str):
        return value != ""
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Strict equality: same kind of value and equal. Numbers compare across int/float."""
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


# =============================================================================
# Expression nodes
# =============================================================================

_DEP_PATTERN = r"\$deps\[(\d+)\]"


def _dep_token(index: int) -> str:
    return f"$deps[{index}]"


def _dependency(deps: Sequence[Any], index: int) -> Any:
    return deps[index] if 0 <= index < len(deps) else None


class Expression:
    """Base class for compiled boolean expressions."""

    def evaluate(self, deps: Sequence[Any]) -> bool:
        raise NotImplementedError

    def render_body(self) -> str:
        raise NotImplementedError

    def to_template(self) -> str:
        return "{{" + self.render_body() + "}}"


@dataclass(frozen=True)
class Literal(Expression):
    value: bool

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return self.value

    def render_body(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class Truthy(Expression):
    index: int = 0

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return is_truthy(_dependency(deps, self.index))

    def render_body(self) -> str:
        return "!!" + _dep_token(self.index)


@dataclass(frozen=True)
class Falsy(Expression):
    index: int = 0

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return not is_truthy(_dependency(deps, self.index))

    def render_body(self) -> str:
        return "!" + _dep_token(self.index)


@dataclass(frozen=True)
class Equals(Expression):
    target: Any
    index: int = 0

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return strict_equals(_dependency(deps, self.index), self.target)

    def render_body(self) -> str:
        return f"{_dep_token(self.index)} === {json.dumps(self.target, ensure_ascii=False)}"


@dataclass(frozen=True)
class NotEquals(Expression):
    target: Any
    index: int = 0

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return not strict_equals(_dependency(deps, self.index), self.target)

    def render_body(self) -> str:
        return f"{_dep_token(self.index)} !== {json.dumps(self.target, ensure_ascii=False)}"


@dataclass(frozen=True)
class Not(Expression):
    operand: Expression

    def evaluate(self, deps: Sequence[Any]) -> bool:
        return not self.operand.evaluate(deps)

    def render_body(self) -> str:
        return f"!({self.operand.render_body()})"


def parse_expression(text: Union[str, bool]) -> Expression:
    """
    Parse an expression produced by this compiler back into nodes.

    Raises:
        ValueError: If the text is outside the grammar the compiler emits
    """
    if isinstance(text, bool):
        return Literal(text)
    if not isinstance(text, str):
        raise ValueError(f"Unsupported expression: {text!r}")

    match = re.fullmatch(r"\s*\{\{(.*)\}\}\s*", text, re.DOTALL)
    if not match:
        raise ValueError(f"Expression is not a template: {text!r}")
    return _parse_body(match.group(1).strip())


def _parse_body(body: str) -> Expression:
    if body.startswith("!(") and body.endswith(")"):
        return Not(_parse_body(body[2:-1].strip()))
    if body in ("true", "false"):
        return Literal(body == "true")

    match = re.fullmatch(r"!!" + _DEP_PATTERN, body)
    if match:
        return Truthy(int(match.group(1)))
    match = re.fullmatch(r"!" + _DEP_PATTERN, body)
    if match:
        return Falsy(int(match.group(1)))

    match = re.fullmatch(_DEP_PATTERN + r"\s*(===|!==)\s*(.+)", body, re.DOTALL)
    if match:
        try:
            target = json.loads(match.group(3))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid comparison value in expression: {body!r}") from e
        node_class = Equals if match.group(2) == "===" else NotEquals
        return node_class(target, int(match.group(1)))

    raise ValueError(f"Unsupported expression: {body!r}")


# =============================================================================
# Rule -> expression
# =============================================================================

def coerce_rule(rule: RuleLike) -> ConditionalVisibilityRule:
    if isinstance(rule, ConditionalVisibilityRule):
        return rule
    return ConditionalVisibilityRule.model_validate(rule)


def build_base_expression(rule: ConditionalVisibilityRule) -> Expression:
    """Expression that is true exactly when the rule's condition holds."""
    if rule.is_incomplete:
        return Literal(True)
    if rule.condition == VisibilityCondition.HAS_VALUE.value:
        return Truthy()
    if rule.condition == VisibilityCondition.IS_EMPTY.value:
        return Falsy()
    if rule.condition == VisibilityCondition.EQUALS.value:
        return Equals(rule.target_value)
    if rule.condition == VisibilityCondition.NOT_EQUALS.value:
        return NotEquals(rule.target_value)
    return Literal(True)


def build_state_expression(rule: RuleLike) -> Dict[str, Expression]:
    """
    Map the rule's action onto the field state it drives.

    ``show`` sets ``visible`` to the base expression, ``hide`` to its negation
    and ``disable`` sets ``disabled`` to the base expression. Disabled rules
    drive nothing. Incomplete rules leave the field visible and enabled.
    """
    rule = coerce_rule(rule)
    if not rule.enabled:
        return {}

    if rule.is_incomplete:
        if rule.action == VisibilityAction.DISABLE.value:
            return {'disabled': Literal(False)}
        return {'visible': Literal(True)}

    base = build_base_expression(rule)
    if rule.action == VisibilityAction.DISABLE.value:
        return {'disabled': base}
    if rule.action == VisibilityAction.HIDE.value:
        return {'visible': Not(base)}
    return {'visible': base}


def build_logic_preview(rule: RuleLike, parent_label: str) -> str:
    """Human-readable sentence describing what the rule does."""
    rule = coerce_rule(rule)
    value = "" if rule.target_value is None else rule.target_value
    condition_text = CONDITION_PHRASES.get(rule.condition, 'matches condition').format(value=value)
    action_text = ACTION_PHRASES.get(rule.action, 'show this field')
    return f'When "{parent_label}" {condition_text}, {action_text}'


def compile_reaction(rule: RuleLike, issues: Optional[List[str]] = None) -> ConditionalReaction:
    """Compile a rule into a reaction without checking it against a schema."""
    rule = coerce_rule(rule)
    state = build_state_expression(rule)

    flags = list(issues or [])
    if rule.enabled and rule.is_incomplete and ReactionIssue.INCOMPLETE_RULE.value not in flags:
        flags.append(ReactionIssue.INCOMPLETE_RULE.value)

    return ConditionalReaction(
        dependencies=[rule.parent_field] if rule.enabled else [],
        fulfill={'state': {key: expr.to_template() for key, expr in state.items()}} if state else {},
        rule=rule.model_copy(),
        issues=flags or None,
    )


def disable_reaction(reaction: ConditionalReaction, issue: str) -> ConditionalReaction:
    """Return the reaction with its rule disabled and flagged with ``issue``."""
    rule = decompile(reaction)
    if rule is None:
        return reaction
    flags = [flag for flag in (reaction.issues or []) if flag != ReactionIssue.INCOMPLETE_RULE.value]
    if issue not in flags:
        flags.append(issue)
    return compile_reaction(rule.model_copy(update={'enabled': False}), flags)


def decompile(reaction: Optional[ReactionLike]) -> Optional[ConditionalVisibilityRule]:
    """
    Recover the rule behind a reaction.

    The stored rule is returned when present. Otherwise the rule is rebuilt
    from the expression text. Reactions that are not conditional-visibility
    reactions give None.
    """
    if reaction is None:
        return None
    if isinstance(reaction, dict):
        reaction = ConditionalReaction.model_validate(reaction)

    if reaction.rule is not None:
        return reaction.rule.model_copy()

    state = reaction.state
    if not reaction.dependencies or not state:
        return None

    state_key = 'disabled' if 'disabled' in state else 'visible'
    try:
        expression = parse_expression(state[state_key])
    except ValueError:
        logger.debug(f"Reaction expression is not a visibility rule: {state[state_key]!r}")
        return None

    if state_key == 'disabled':
        action = VisibilityAction.DISABLE.value
    elif isinstance(expression, Not):
        action = VisibilityAction.HIDE.value
        expression = expression.operand
    else:
        action = VisibilityAction.SHOW.value

    if isinstance(expression, Truthy):
        condition, target = VisibilityCondition.HAS_VALUE.value, None
    elif isinstance(expression, Falsy):
        condition, target = VisibilityCondition.IS_EMPTY.value, None
    elif isinstance(expression, Equals):
        condition, target = VisibilityCondition.EQUALS.value, expression.target
    elif isinstance(expression, NotEquals):
        condition, target = VisibilityCondition.NOT_EQUALS.value, expression.target
    else:
        return None

    return ConditionalVisibilityRule(
        parent_field=reaction.dependencies[0],
        condition=condition,
        target_value=target,
        action=action,
    )


# =============================================================================
# Schema-aware compilation
# =============================================================================

@dataclass
class CompiledRule:
    """Result of compiling a rule for one field."""
    field_path: str
    reaction: ConditionalReaction
    incomplete: bool
    preview: str
    parent_options: Optional[List[EnumOption]] = None

    def as_patch(self) -> Dict[str, Any]:
        """Patch that stores the reaction on the field via ``update_field``."""
        return {'x-reactions': self.reaction}


class RuleCompiler:
    """Compiles rules against one schema tree (read-only)."""

    def __init__(self, schema: SchemaProperty):
        self.schema = schema

    def parent_label(self, parent_field: str) -> str:
        node = resolve(self.schema, parent_field) if parent_field else None
        if node is not None and node.title:
            return node.title
        return parent_field

    def compile(self, field_path: str, rule: RuleLike) -> CompiledRule:
        """
        Validate and compile ``rule`` for the field at ``field_path``.

        Raises:
            NotFoundError: If the owning field does not exist
            SelfReferenceError: If the rule depends on its own field
            DanglingReferenceError: If an enabled rule's parent field does not exist
        """
        rule = coerce_rule(rule)
        field_path = normalize_path(field_path)
        if not field_path or resolve(self.schema, field_path) is None:
            raise NotFoundError(field_path)

        parent = normalize_path(rule.parent_field)
        if parent == field_path:
            raise SelfReferenceError(field_path)

        parent_node = resolve(self.schema, parent) if parent else None
        if parent_node is None and rule.enabled:
            raise DanglingReferenceError(field_path, rule.parent_field)

        if parent != rule.parent_field:
            rule = rule.model_copy(update={'parent_field': parent})

        reaction = compile_reaction(rule)
        return CompiledRule(
            field_path=field_path,
            reaction=reaction,
            incomplete=reaction.has_issue(ReactionIssue.INCOMPLETE_RULE.value),
            preview=build_logic_preview(rule, self.parent_label(parent)),
            parent_options=list(parent_node.enum) if parent_node is not None and parent_node.enum else None,
        )

    def decompile(self, reaction: Optional[ReactionLike]) -> Optional[ConditionalVisibilityRule]:
        return decompile(reaction)

    def preview(self, rule: RuleLike) -> str:
        rule = coerce_rule(rule)
        return build_logic_preview(rule, self.parent_label(rule.parent_field))


# =============================================================================
# Render-time evaluation
# =============================================================================

@dataclass(frozen=True)
class FieldState:
    visible: bool = True
    disabled: bool = False


def _evaluate_state_value(value: Any, deps: Sequence[Any], default: bool) -> bool:
    try:
        return parse_expression(value).evaluate(deps)
    except ValueError as e:
        logger.warning(f"Ignoring reaction expression that cannot be evaluated: {e}")
        return default


def evaluate_reaction(reaction: Optional[ConditionalReaction], values: Mapping[str, Any]) -> FieldState:
    """
    Evaluate a field's reaction against current form values.

    Args:
        reaction: The field's compiled reaction, if any
        values: Form values keyed by field path

    Returns:
        FieldState for the field on its own (ancestors not considered)
    """
    if reaction is None:
        return FieldState()

    state = reaction.state
    deps = [values.get(dependency) for dependency in reaction.dependencies]
    visible = _evaluate_state_value(state['visible'], deps, True) if 'visible' in state else True
    disabled = _evaluate_state_value(state['disabled'], deps, False) if 'disabled' in state else False
    return FieldState(visible=visible, disabled=disabled)


def resolve_field_states(schema: SchemaProperty, values: Mapping[str, Any]) -> Dict[str, FieldState]:
    """
    Compute the presentation state of every field.

    A field inside a hidden container is hidden, and one inside a disabled
    container is disabled.
    """
    states: Dict[str, FieldState] = {}
    for path, field in OrderedFields(schema):
        own = evaluate_reaction(field.reactions, values)
        inherited = states.get(parent_path(path), FieldState())
        states[path] = FieldState(
            visible=own.visible and inherited.visible,
            disabled=own.disabled or inherited.disabled,
        )
    return states


def field_label(schema: SchemaProperty, path: str) -> str:
    node = resolve(schema, path)
    return node.title if node is not None and node.title else leaf_key(path)
