"""
Unit tests for the conditional visibility rule compiler.
"""

import math

import pytest

from form_builder.exceptions import DanglingReferenceError, NotFoundError, SelfReferenceError
from form_builder.models import ConditionalReaction, ConditionalVisibilityRule, ReactionIssue, SchemaProperty
from form_builder.rule_compiler import (
    Equals,
    FieldState,
    Not,
    NotEquals,
    RuleCompiler,
    Truthy,
    build_logic_preview,
    compile_reaction,
    decompile,
    disable_reaction,
    evaluate_reaction,
    is_truthy,
    parse_expression,
    resolve_field_states,
    strict_equals,
)


def _schema():
    return SchemaProperty.model_validate({
        'type': 'object',
        'properties': {
            'status': {
                'type': 'string',
                'title': 'Status',
                'x-index': 0,
                'enum': [{'label': 'Approved', 'value': 'approved'}, {'label': 'Rejected', 'value': 'rejected'}],
            },
            'comment': {'type': 'string', 'x-index': 1},
            'details': {
                'type': 'object',
                'x-index': 2,
                'properties': {'notes': {'type': 'string', 'x-index': 0}},
            },
        },
    })


def _rule(condition='equals', action='show', target='approved', parent='status'):
    return {'parentField': parent, 'condition': condition, 'targetValue': target, 'action': action}


class TestValueSemantics:
    """Test cases for truthiness and strict equality."""

    @pytest.mark.parametrize("value,expected", [
        (None, False), (False, False), (0, False), (0.0, False), ("", False), (math.nan, False),
        (True, True), (1, True), (-2.5, True), ("0", True), ("false", True), ([], True), ({}, True),
    ])
    def test_is_truthy(self, value, expected):
        assert is_truthy(value) is expected

    def test_strict_equals(self):
        assert strict_equals("approved", "approved")
        assert strict_equals(3, 3.0)
        assert not strict_equals("3", 3)
        assert not strict_equals(True, 1)
        assert not strict_equals(None, "")
        assert strict_equals(None, None)


class TestCompileReaction:
    """Test cases for compiling rules into reactions."""

    def test_equals_show(self):
        reaction = compile_reaction(_rule())

        assert reaction.dependencies == ['status']
        assert reaction.fulfill == {'state': {'visible': '{{$deps[0] === "approved"}}'}}
        assert reaction.rule.target_value == 'approved'
        assert reaction.issues is None

    def test_equals_hide_wraps_in_negation(self):
        reaction = compile_reaction(_rule(action='hide'))
        assert reaction.state == {'visible': '{{!($deps[0] === "approved")}}'}

    @pytest.mark.parametrize("condition,target,template", [
        ('hasValue', None, '{{!!$deps[0]}}'),
        ('isEmpty', None, '{{!$deps[0]}}'),
        ('notEquals', 'draft', '{{$deps[0] !== "draft"}}'),
        ('equals', 3, '{{$deps[0] === 3}}'),
    ])
    def test_condition_templates(self, condition, target, template):
        reaction = compile_reaction(_rule(condition=condition, target=target))
        assert reaction.state['visible'] == template

    def test_disable_action_drives_disabled(self):
        reaction = compile_reaction(_rule(condition='hasValue', action='disable'))
        assert reaction.state == {'disabled': '{{!!$deps[0]}}'}

    def test_target_value_is_dropped_for_value_free_conditions(self):
        rule = ConditionalVisibilityRule.model_validate(_rule(condition='isEmpty', target='stale'))
        assert rule.target_value is None

    def test_incomplete_rule_is_permissive_and_flagged(self):
        reaction = compile_reaction(_rule(target=''))

        assert reaction.state == {'visible': '{{true}}'}
        assert reaction.has_issue(ReactionIssue.INCOMPLETE_RULE.value)

    def test_disabled_rule_drives_nothing(self):
        reaction = compile_reaction({**_rule(), 'enabled': False})

        assert reaction.dependencies == []
        assert reaction.fulfill == {}
        assert reaction.rule.enabled is False

    def test_disable_reaction_flags_and_keeps_rule(self):
        flagged = disable_reaction(compile_reaction(_rule()), ReactionIssue.DANGLING_REFERENCE.value)

        assert flagged.rule.enabled is False
        assert flagged.rule.target_value == 'approved'
        assert flagged.issues == [ReactionIssue.DANGLING_REFERENCE.value]


class TestExpressions:
    """Test cases for expression parsing and evaluation."""

    def test_parse_nested_negation(self):
        expression = parse_expression('{{!($deps[0] === "approved")}}')
        assert expression == Not(Equals("approved"))

    def test_parse_literals_and_booleans(self):
        assert parse_expression('{{true}}').evaluate([]) is True
        assert parse_expression(False).evaluate([]) is False

    @pytest.mark.parametrize("text", [
        'plain text', '{{$deps[0] > 3}}', '{{$deps[0] === approved}}', '{{foo()}}',
    ])
    def test_parse_rejects_foreign_expressions(self, text):
        with pytest.raises(ValueError):
            parse_expression(text)

    def test_show_and_hide_are_always_opposite(self):
        show = parse_expression(compile_reaction(_rule()).state['visible'])
        hide = parse_expression(compile_reaction(_rule(action='hide')).state['visible'])

        for value in ['approved', 'rejected', '', None, 0, 'Approved']:
            assert show.evaluate([value]) is not hide.evaluate([value])

    def test_missing_dependency_is_undefined(self):
        assert Truthy(0).evaluate([]) is False
        assert NotEquals("x").evaluate([]) is True


class TestDecompile:
    """Test cases for recovering rules from reactions."""

    def test_stored_rule_is_returned(self):
        rule = decompile(compile_reaction(_rule(action='hide')))

        assert rule.parent_field == 'status'
        assert rule.condition == 'equals'
        assert rule.action == 'hide'
        assert rule.target_value == 'approved'

    @pytest.mark.parametrize("condition,action,target", [
        ('hasValue', 'show', None),
        ('isEmpty', 'hide', None),
        ('equals', 'disable', 'approved'),
        ('notEquals', 'hide', 'draft'),
    ])
    def test_rule_is_rebuilt_from_expression_text(self, condition, action, target):
        compiled = compile_reaction(_rule(condition=condition, action=action, target=target))
        bare = {'dependencies': compiled.dependencies, 'fulfill': compiled.fulfill}

        rule = decompile(bare)

        assert rule.behavior_key() == ConditionalVisibilityRule.model_validate(
            _rule(condition=condition, action=action, target=target)
        ).behavior_key()

    def test_foreign_reaction_gives_none(self):
        assert decompile(None) is None
        assert decompile({'dependencies': ['a'], 'fulfill': {'state': {'visible': '{{$deps[0] > 1}}'}}}) is None
        assert decompile({'dependencies': [], 'fulfill': {}}) is None

    def test_decompile_accepts_exported_dict(self):
        exported = compile_reaction(_rule()).model_dump(by_alias=True, exclude_none=True)
        assert decompile(exported).target_value == 'approved'


class TestRuleCompiler:
    """Test cases for schema-aware compilation."""

    def test_compile_scenario(self):
        compiled = RuleCompiler(_schema()).compile('comment', _rule())

        assert compiled.field_path == 'comment'
        assert compiled.reaction.state == {'visible': '{{$deps[0] === "approved"}}'}
        assert compiled.preview == 'When "Status" equals "approved", show this field'
        assert [option.value for option in compiled.parent_options] == ['approved', 'rejected']
        assert compiled.as_patch() == {'x-reactions': compiled.reaction}
        assert not compiled.incomplete

    def test_compile_incomplete(self):
        compiled = RuleCompiler(_schema()).compile('comment', _rule(target=None))
        assert compiled.incomplete

    def test_compile_errors(self):
        compiler = RuleCompiler(_schema())

        with pytest.raises(NotFoundError):
            compiler.compile('ghost', _rule())
        with pytest.raises(SelfReferenceError):
            compiler.compile('status', _rule())
        with pytest.raises(DanglingReferenceError):
            compiler.compile('comment', _rule(parent='ghost'))

    def test_disabled_rule_may_reference_missing_field(self):
        compiled = RuleCompiler(_schema()).compile('comment', {**_rule(parent='ghost'), 'enabled': False})
        assert compiled.reaction.dependencies == []

    def test_preview_uses_path_when_parent_has_no_title(self):
        preview = RuleCompiler(_schema()).preview(_rule(condition='hasValue', action='hide', parent='comment'))
        assert preview == 'When "comment" has a value, hide this field'

    def test_logic_preview_phrases(self):
        assert build_logic_preview(_rule(condition='notEquals', action='disable'), 'Status') == \
            'When "Status" does not equal "approved", disable this field'
        assert build_logic_preview(_rule(condition='isEmpty'), 'Status') == 'When "Status" is empty, show this field'


class TestEvaluation:
    """Test cases for evaluating reactions against form values."""

    def test_evaluate_reaction(self):
        reaction = compile_reaction(_rule())

        assert evaluate_reaction(reaction, {'status': 'approved'}) == FieldState(visible=True)
        assert evaluate_reaction(reaction, {'status': 'rejected'}).visible is False
        assert evaluate_reaction(None, {}) == FieldState()

    def test_unparseable_state_keeps_default(self):
        reaction = ConditionalReaction(dependencies=['status'], fulfill={'state': {'visible': '{{weird}}'}})
        assert evaluate_reaction(reaction, {'status': 'x'}) == FieldState()

    def test_hidden_container_hides_descendants(self):
        schema = _schema()
        details = schema.properties['details'].model_copy(update={'reactions': compile_reaction(_rule())})
        schema = schema.model_copy(update={'properties': {**schema.properties, 'details': details}})

        hidden = resolve_field_states(schema, {'status': 'rejected'})
        shown = resolve_field_states(schema, {'status': 'approved'})

        assert hidden['details'].visible is False
        assert hidden['details.notes'].visible is False
        assert hidden['comment'].visible is True
        assert shown['details.notes'].visible is True

    def test_disabled_container_disables_descendants(self):
        schema = _schema()
        details = schema.properties['details'].model_copy(
            update={'reactions': compile_reaction(_rule(condition='isEmpty', action='disable'))}
        )
        schema = schema.model_copy(update={'properties': {**schema.properties, 'details': details}})

        states = resolve_field_states(schema, {})

        assert states['details.notes'].disabled is True
        assert states['details.notes'].visible is True
