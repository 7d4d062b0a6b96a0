"""
Demonstration macros: unless, the shape-dispatched say, and the
hygiene pair no_interference / interference.

Each macro builds its result by quoting a template and unquoting the
caller's argument trees into it.
"""

from ast_nodes import is_call
from expander import MacroRegistry
from quoter import quote, unquote

_UNLESS = quote("if(!unquote(expr), unquote(block))")

_SAY = """
lhs = unquote(left)
rhs = unquote(right)
result = lhs {op} rhs
puts(to_string(lhs) <> " {word} " <> to_string(rhs) <> " is " <> to_string(result))
result
"""
_SAY_PLUS = quote(_SAY.format(op="+", word="plus"))
_SAY_TIMES = quote(_SAY.format(op="*", word="times"))

_SQUARE = quote("unquote(x) * unquote(x)")
_SQUARE_ONCE = quote("value = unquote(x); value * value")

_NO_INTERFERENCE = quote("a = 1")
_INTERFERENCE = quote("var!(a) = 1")


def default_registry():
    """Return a new, still open registry holding the demonstration macros."""
    registry = MacroRegistry()

    @registry.defmacro("unless", 2)
    def unless(expr, block):
        return unquote(_UNLESS, {"expr": expr, "block": block})

    # say/1 dispatches on the shape of its argument; first match wins
    @registry.defmacro("say", 1, when=lambda expr: is_call(expr, "+", 2))
    def say_plus(expr):
        left, right = expr.arguments
        return unquote(_SAY_PLUS, {"left": left, "right": right})

    @registry.defmacro("say", 1, when=lambda expr: is_call(expr, "*", 2))
    def say_times(expr):
        left, right = expr.arguments
        return unquote(_SAY_TIMES, {"left": left, "right": right})

    # Evaluates x twice
    @registry.defmacro("square", 1)
    def square(x):
        return unquote(_SQUARE, {"x": x})

    @registry.defmacro("square_once", 1)
    def square_once(x):
        return unquote(_SQUARE_ONCE, {"x": x})

    @registry.defmacro("no_interference", 0)
    def no_interference():
        return _NO_INTERFERENCE

    @registry.defmacro("interference", 0)
    def interference():
        return _INTERFERENCE

    return registry
