"""Tests for the macro registry, expansion passes and hygiene."""

import pytest

from ast_nodes import Atom, Call, Identifier, Literal
from errors import ExpansionLimitExceeded, NoMatchingClause, RegistryFrozen, UnknownMacro
from expander import (
    Expansion, ExpansionState, MacroRegistry, MacroScope,
    expand_fully, expand_once,
)
from kernel import default_registry
from quoter import quote, unquote


@pytest.fixture
def registry():
    return default_registry()


class TestRegistry:
    def test_defmacro_registers_by_name_and_arity(self) -> None:
        registry = MacroRegistry()

        @registry.defmacro("twice", 1)
        def twice(x):
            return Call("+", (x, x))

        assert ("twice", 1) in registry
        assert ("twice", 2) not in registry
        assert registry.names() == ["twice/1"]
        assert len(registry) == 1

    def test_clauses_accumulate_under_one_definition(self, registry) -> None:
        assert len(registry.fetch("say", 1).clauses) == 2

    def test_special_forms_cannot_be_macros(self) -> None:
        registry = MacroRegistry()
        for name in ("if", "=", "__block__", "quote", "+", "!"):
            with pytest.raises(ValueError):
                registry.register(name, 2, lambda *args: Literal(None))

    def test_fetch_unknown_macro(self, registry) -> None:
        assert registry.lookup("foo", 1) is None
        with pytest.raises(UnknownMacro):
            registry.fetch("foo", 1)

    def test_expansion_freezes_the_registry(self, registry) -> None:
        assert not registry.frozen
        expand_fully(quote("1"), registry)
        assert registry.frozen
        with pytest.raises(RegistryFrozen):
            registry.register("late", 0, lambda: Literal(1))


class TestExpansion:
    def test_unless_scenario(self, registry) -> None:
        condition = Call("==", (Literal(2), Literal(5)))
        tree = Call("unless", (condition, Literal("block entered")))

        expanded = expand_fully(tree, registry)

        assert expanded == Call("if", (
            Call("!", (Call("==", (Literal(2), Literal(5))),)),
            Literal("block entered"),
        ))

    def test_expand_once_leaves_inner_calls_for_the_next_pass(self, registry) -> None:
        tree = quote("square(square(2))")
        assert expand_once(tree, registry) == quote("square(2) * square(2)")

    def test_expand_fully_reaches_a_fixed_point(self, registry) -> None:
        tree = quote("square(square(2))")
        assert expand_fully(tree, registry) == quote("(2 * 2) * (2 * 2)")

    def test_expansion_is_idempotent(self, registry) -> None:
        tree = quote("say(square(1) + unless(false, 3))")
        once = expand_fully(tree, registry)
        assert expand_fully(once, registry) == once

    def test_non_macro_calls_are_left_as_plain_calls(self, registry) -> None:
        tree = quote("foo(1, square(2))")
        assert expand_fully(tree, registry) == quote("foo(1, 2 * 2)")

    def test_arity_is_part_of_the_key(self, registry) -> None:
        tree = quote("square(1, 2)")
        assert expand_fully(tree, registry) == tree

    def test_outer_macro_sees_unexpanded_arguments(self) -> None:
        registry = MacroRegistry()

        @registry.defmacro("shape", 1)
        def shape(expr):
            return Literal(Atom(expr.operator))

        @registry.defmacro("inner", 0)
        def inner():
            return Literal(1)

        assert expand_fully(quote("shape(inner())"), registry) == Literal(Atom("inner"))

    def test_quoted_code_is_not_expanded(self, registry) -> None:
        tree = quote("quote(square(2))")
        assert expand_fully(tree, registry) == tree

    def test_macros_inside_collections(self, registry) -> None:
        tree = quote("{square(1), [square(2)]}")
        assert expand_fully(tree, registry) == quote("{1 * 1, [2 * 2]}")

    def test_plain_return_values_are_escaped(self) -> None:
        registry = MacroRegistry()
        registry.register("answer", 0, lambda: 42)
        assert expand_fully(quote("answer()"), registry) == Literal(42)

    def test_unchanged_tree_is_returned_as_is(self, registry) -> None:
        tree = quote("a + b")
        assert expand_fully(tree, registry) is tree


class TestClauseDispatch:
    def test_first_matching_clause_wins(self, registry) -> None:
        plus = expand_fully(quote("say(1 + 2)"), registry)
        times = expand_fully(quote("say(1 * 2)"), registry)
        assert "plus" in str(plus)
        assert "times" in str(times)

    def test_no_matching_clause(self, registry) -> None:
        expansion = Expansion(quote("say(1 - 2)"), registry)
        with pytest.raises(NoMatchingClause):
            expansion.run()
        assert expansion.state is ExpansionState.FAILED

    def test_handler_errors_fail_the_expansion(self) -> None:
        registry = MacroRegistry()
        registry.register("broken", 0, lambda: object())

        expansion = Expansion(quote("broken()"), registry)
        with pytest.raises(TypeError):
            expansion.step()
        assert expansion.state is ExpansionState.FAILED
        assert expansion.done


class TestExpansionStates:
    def test_state_transitions(self, registry) -> None:
        expansion = Expansion(quote("square(square(2))"), registry)
        assert expansion.state is ExpansionState.UNEXPANDED

        expansion.step()
        assert expansion.state is ExpansionState.PARTIALLY_EXPANDED
        expansion.step()
        assert expansion.state is ExpansionState.PARTIALLY_EXPANDED
        expansion.step()
        assert expansion.state is ExpansionState.FULLY_EXPANDED
        assert expansion.passes == 2
        assert expansion.substitutions == 3

    def test_tree_without_macros_is_fully_expanded_at_once(self, registry) -> None:
        expansion = Expansion(quote("1 + 2"), registry)
        expansion.step()
        assert expansion.state is ExpansionState.FULLY_EXPANDED
        assert expansion.passes == 0

    def test_terminal_state_step_is_a_no_op(self, registry) -> None:
        expansion = Expansion(quote("square(2)"), registry)
        tree = expansion.run()
        assert expansion.step() is tree

    @pytest.mark.parametrize("depth", [1, 2, 3, 5])
    def test_passes_bounded_by_nesting_depth(self, registry, depth) -> None:
        text = "2"
        for _ in range(depth):
            text = f"square_once({text})"
        expansion = Expansion(quote(text), registry, max_passes=depth)
        expansion.run()
        assert expansion.state is ExpansionState.FULLY_EXPANDED
        assert expansion.passes == depth

    def test_non_terminating_macro_hits_the_guard(self) -> None:
        registry = MacroRegistry()
        registry.register("forever", 0, lambda: Call("forever"))

        expansion = Expansion(quote("forever()"), registry, max_passes=5)
        with pytest.raises(ExpansionLimitExceeded) as info:
            expansion.run()
        assert expansion.state is ExpansionState.FAILED
        assert info.value.passes == 5

    def test_expand_fully_guard(self) -> None:
        registry = MacroRegistry()
        registry.register("forever", 0, lambda: Call("forever"))
        with pytest.raises(ExpansionLimitExceeded):
            expand_fully(quote("forever()"), registry, max_passes=3)


class TestHygiene:
    def test_introduced_variables_get_a_fresh_scope(self, registry) -> None:
        expanded = expand_fully(quote("no_interference()"), registry)
        variable = expanded.arguments[0]
        assert variable.name == "a"
        assert isinstance(variable.scope, MacroScope)
        assert variable.scope.macro == "no_interference"

    def test_each_invocation_gets_its_own_scope(self, registry) -> None:
        expanded = expand_fully(quote("no_interference(); no_interference()"), registry)
        first, second = (statement.arguments[0] for statement in expanded.arguments)
        assert first.scope != second.scope

    def test_var_escape_resolves_in_the_caller_scope(self, registry) -> None:
        expanded = expand_fully(quote("interference()"), registry)
        assert expanded == Call("=", (Identifier("a"), Literal(1)))

    def test_caller_arguments_are_untouched(self, registry) -> None:
        expanded = expand_fully(quote("unless(a, b)"), registry)
        assert expanded == quote("if(!a, b)")

    def test_unquoted_caller_nodes_are_not_renamed(self) -> None:
        registry = MacroRegistry()
        template = quote("tmp = unquote(x); tmp + x")

        @registry.defmacro("with_tmp", 1)
        def with_tmp(x):
            return unquote(template, {"x": x})

        expanded = expand_fully(quote("with_tmp(tmp)"), registry)
        assignment, addition = expanded.arguments
        assert assignment.arguments[0].scope is not None
        assert assignment.arguments[1] == Identifier("tmp")
        assert addition.arguments[1] == Identifier("tmp")
