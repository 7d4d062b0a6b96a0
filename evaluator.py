import logging
import operator
import sys

from ast_nodes import (
    Atom, Call, Identifier, Literal, Node, Sequence, SideEffect,
    is_keywords, keyword_get, to_source,
)
from errors import ArityMismatch, EvaluationError, MatchError, UnboundIdentifier, UndefinedFunction

logger = logging.getLogger(__name__)

_FALSY_ATOMS = (Atom("false"), Atom("nil"))


def truthy(value):
    if value is None or value is False:
        return False
    return value not in _FALSY_ATOMS if isinstance(value, Atom) else True


def equal(left, right):
    """Value equality where booleans never equal numbers (1 == true is false)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return type(left) is type(right) and len(left) == len(right) \
            and all(equal(a, b) for a, b in zip(left, right))
    return left == right


def _concat(left, right):
    if not isinstance(left, str) or not isinstance(right, str):
        raise TypeError(f"<> expects two strings, got {inspect(left)} and {inspect(right)}")
    return left + right


def _list_concat(left, right):
    if not isinstance(left, list) or not isinstance(right, list):
        raise TypeError(f"++ expects two lists, got {inspect(left)} and {inspect(right)}")
    return left + right


# operator -> {arity: implementation}
PRIMITIVES = {
    "+": {1: operator.pos, 2: operator.add},
    "-": {1: operator.neg, 2: operator.sub},
    "*": {2: operator.mul},
    "/": {2: operator.truediv},
    "==": {2: equal},
    "!=": {2: lambda a, b: not equal(a, b)},
    "<": {2: operator.lt},
    ">": {2: operator.gt},
    "<=": {2: operator.le},
    ">=": {2: operator.ge},
    "!": {1: lambda v: not truthy(v)},
    "not": {1: lambda v: not truthy(v)},
    "<>": {2: _concat},
    "++": {2: _list_concat},
}

SHORT_CIRCUIT = {"and": False, "&&": False, "or": True, "||": True}


def inspect(value):
    """Render a value the way Elixir's inspect/1 would."""
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return to_source(Literal(value))
    if isinstance(value, list):
        return "[" + ", ".join(inspect(v) for v in value) + "]"
    if isinstance(value, tuple):
        return "{" + ", ".join(inspect(v) for v in value) + "}"
    if isinstance(value, Node):
        return f"quote({to_source(value)})"
    return str(value)


def to_string(value):
    if isinstance(value, str):
        return value
    if isinstance(value, Atom):
        return value.name
    if value is None:
        return ""
    return inspect(value)


def _integer_division(a, b):
    if not isinstance(a, int) or not isinstance(b, int):
        raise TypeError(f"div/rem expect integers, got {inspect(a)} and {inspect(b)}")
    # truncates toward zero
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _io_inspect(ev, value):
    # IO.inspect/1 prints and passes its argument through
    ev.write(inspect(value))
    return value


# name -> ({arities}, implementation receiving the evaluator first)
BUILTIN_FUNCTIONS = {
    "puts": ({1}, lambda ev, v: ev.write(to_string(v))),
    "IO.puts": ({1}, lambda ev, v: ev.write(to_string(v))),
    "IO.inspect": ({1}, lambda ev, v: _io_inspect(ev, v)),
    "inspect": ({1}, lambda ev, v: inspect(v)),
    "to_string": ({1}, lambda ev, v: to_string(v)),
    "div": ({2}, lambda ev, a, b: _integer_division(a, b)),
    "rem": ({2}, lambda ev, a, b: a - b * _integer_division(a, b)),
    "abs": ({1}, lambda ev, v: abs(v)),
    "elem": ({2}, lambda ev, t, i: t[i]),
    "length": ({1}, lambda ev, v: len(v)),
    "tuple_size": ({1}, lambda ev, v: len(v)),
}


class BindingEnvironment:
    """Variable values keyed by (name, scope).

    Caller-level variables live in scope None; variables introduced by a
    hygienic macro carry that expansion's scope tag.
    """

    def __init__(self, bindings=None):
        self._values = {}
        for name, value in (bindings or {}).items():
            self.bind(name, value)

    @staticmethod
    def key(identifier):
        return (identifier.name, None if identifier.escape else identifier.scope)

    def bind(self, name, value, scope=None):
        self._values[(name, scope)] = value

    def assign(self, identifier, value):
        self._values[self.key(identifier)] = value

    def lookup(self, identifier):
        try:
            return self._values[self.key(identifier)]
        except KeyError:
            raise UnboundIdentifier(identifier) from None

    def get(self, name, scope=None, default=None):
        return self._values.get((name, scope), default)

    def as_dict(self):
        """Caller-level bindings only."""
        return {name: value for (name, scope), value in self._values.items() if scope is None}

    def __contains__(self, name):
        if isinstance(name, Identifier):
            return self.key(name) in self._values
        return (name, None) in self._values

    def __len__(self):
        return len(self._values)


class Evaluator:
    def __init__(self, env=None, output=None, functions=None):
        self.env = env if env is not None else BindingEnvironment()
        self.output = output if output is not None else sys.stdout
        self.functions = dict(functions or {})

    def write(self, text):
        print(text, file=self.output)
        return SideEffect("puts")

    def evaluate(self, node):
        if isinstance(node, Literal):
            if isinstance(node.value, tuple):
                return tuple(self.evaluate(v) for v in node.value)
            return node.value

        elif isinstance(node, Sequence):
            return [self.evaluate(e) for e in node.elements]

        elif isinstance(node, Identifier):
            return self.env.lookup(node)

        elif isinstance(node, Call):
            return self._call(node)

        raise TypeError(f"Cannot evaluate {node!r}")

    # --- Calls ---

    def _call(self, node):
        op, args = node.operator, node.arguments

        if op == "__block__":
            result = None
            for expr in args:
                result = self.evaluate(expr)
            return result

        if op == "=":
            self._check_arity(op, {2}, args)
            value = self.evaluate(args[1])
            self._match(args[0], value)
            return value

        if op == "if":
            return self._if(args)

        if op == "quote":
            self._check_arity(op, {1}, args)
            body = args[0]
            if is_keywords(body):
                return keyword_get(body, "do")
            return body

        if op in SHORT_CIRCUIT:
            self._check_arity(op, {2}, args)
            left = self.evaluate(args[0])
            if truthy(left) == SHORT_CIRCUIT[op]:
                return left
            return self.evaluate(args[1])

        if op in PRIMITIVES:
            implementations = PRIMITIVES[op]
            self._check_arity(op, set(implementations), args)
            values = [self.evaluate(a) for a in args]
            return self._apply(op, implementations[len(args)], values)

        if op in self.functions:
            values = [self.evaluate(a) for a in args]
            return self._apply(op, self.functions[op], values)

        if op in BUILTIN_FUNCTIONS:
            arities, implementation = BUILTIN_FUNCTIONS[op]
            self._check_arity(op, arities, args)
            values = [self.evaluate(a) for a in args]
            return self._apply(op, implementation, [self] + values)

        raise UndefinedFunction(op, len(args))

    def _check_arity(self, op, expected, args):
        if len(args) not in expected:
            raise ArityMismatch(op, expected, len(args))

    def _apply(self, op, fn, values):
        try:
            return fn(*values)
        except (ArithmeticError, TypeError, IndexError) as e:
            raise EvaluationError(f"{op}: {e}") from e

    def _if(self, args):
        if len(args) == 2:
            condition, branch = args
            if is_keywords(branch):
                consequent = keyword_get(branch, "do", Literal(None))
                alternate = keyword_get(branch, "else", Literal(None))
            else:
                consequent, alternate = branch, Literal(None)
        elif len(args) == 3:
            condition, consequent, alternate = args
        else:
            raise ArityMismatch("if", {2, 3}, len(args))

        if truthy(self.evaluate(condition)):
            return self.evaluate(consequent)
        return self.evaluate(alternate)

    def _match(self, pattern, value):
        if isinstance(pattern, Identifier):
            if not pattern.name.startswith("_"):
                self.env.assign(pattern, value)
            return

        if isinstance(pattern, Literal) and isinstance(pattern.value, tuple):
            if not isinstance(value, tuple) or len(value) != len(pattern.value):
                raise MatchError(to_source(pattern), value)
            for sub_pattern, sub_value in zip(pattern.value, value):
                self._match(sub_pattern, sub_value)
            return

        if isinstance(pattern, Sequence):
            if not isinstance(value, list) or len(value) != len(pattern.elements):
                raise MatchError(to_source(pattern), value)
            for sub_pattern, sub_value in zip(pattern.elements, value):
                self._match(sub_pattern, sub_value)
            return

        if isinstance(pattern, Literal) and equal(pattern.value, value):
            return

        raise MatchError(to_source(pattern), value)


def evaluate(tree, env=None, output=None, functions=None):
    """Evaluate a fully expanded tree against `env`; `=` updates `env` in place."""
    logger.debug("Evaluating %s", tree)
    return Evaluator(env, output, functions).evaluate(tree)
