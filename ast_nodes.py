from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Atom:
    name: str

    def __str__(self):
        return f":{self.name}"


class Node:
    """Base of every quoted expression. Nodes are immutable once built."""

    def __str__(self):
        return to_source(self)


@dataclass(frozen=True, eq=False)
class Literal(Node):
    # Atom, int, float, str, bool, None, or a tuple of Nodes
    value: Any

    # 1, 1.0 and true are different literals.
    def __eq__(self, other):
        if not isinstance(other, Literal):
            return NotImplemented
        return type(self.value) is type(other.value) and self.value == other.value

    def __hash__(self):
        return hash((type(self.value), self.value))


@dataclass(frozen=True)
class Identifier(Node):
    name: str
    scope: Optional[Any] = None
    escape: bool = False


@dataclass(frozen=True)
class Call(Node):
    operator: str
    arguments: Tuple[Node, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def arity(self):
        return len(self.arguments)


@dataclass(frozen=True)
class Sequence(Node):
    elements: Tuple[Node, ...] = ()

    def __post_init__(self):
        if not isinstance(self.elements, tuple):
            object.__setattr__(self, "elements", tuple(self.elements))


@dataclass(frozen=True)
class SideEffect:
    """Value returned by print-like operations."""
    operation: str

    def __str__(self):
        return ":ok"


# Forms the expander never looks up in a macro registry.
SPECIAL_FORMS = frozenset({
    "__block__", "=", "if", "quote", "unquote", "unquote_splicing", "var!",
})


def is_call(node, operator, arity=None):
    if not isinstance(node, Call) or node.operator != operator:
        return False
    return arity is None or node.arity == arity


def is_tuple(node, size=None):
    if not isinstance(node, Literal) or not isinstance(node.value, tuple):
        return False
    return size is None or len(node.value) == size


def keyword_pair(key, value):
    return Literal((Literal(Atom(key)), value))


def keyword_get(node, key, default=None):
    """Look up `key` in a keyword-list node, e.g. [do: x, else: y]."""
    if not isinstance(node, Sequence):
        return default
    for element in node.elements:
        if is_tuple(element, 2):
            k, v = element.value
            if isinstance(k, Literal) and k.value == Atom(key):
                return v
    return default


def is_keywords(node):
    if not isinstance(node, Sequence) or not node.elements:
        return False
    return all(
        is_tuple(e, 2) and isinstance(e.value[0], Literal) and isinstance(e.value[0].value, Atom)
        for e in node.elements
    )


def escape(value):
    """Turn a plain Python value into its quoted form (Macro.escape)."""
    if isinstance(value, Node):
        return value
    if isinstance(value, list):
        return Sequence(tuple(escape(v) for v in value))
    if isinstance(value, tuple):
        return Literal(tuple(escape(v) for v in value))
    if value is None or isinstance(value, (Atom, bool, int, float, str)):
        return Literal(value)
    raise TypeError(f"Cannot escape value of type {type(value).__name__}: {value!r}")


def children(node):
    if isinstance(node, Call):
        return node.arguments
    if isinstance(node, Sequence):
        return node.elements
    if isinstance(node, Literal) and isinstance(node.value, tuple):
        return node.value
    return ()


def iter_nodes(node):
    """Yield `node` and every node below it, parents first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


# --- Rendering (Macro.to_string) ---

# operator -> (precedence, right associative)
BINARY_OPERATORS = {
    "=": (1, True),
    "or": (2, False), "||": (2, False),
    "and": (3, False), "&&": (3, False),
    "==": (4, False), "!=": (4, False), "<": (4, False),
    ">": (4, False), "<=": (4, False), ">=": (4, False),
    "<>": (5, True), "++": (5, True),
    "+": (6, False), "-": (6, False),
    "*": (7, False), "/": (7, False),
}
UNARY_OPERATORS = {"!": "!", "-": "-", "+": "+", "not": "not "}
UNARY_PRECEDENCE = 8

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\t": "\\t", "\r": "\\r"}


def _precedence(node):
    if isinstance(node, Call):
        if node.arity == 2 and node.operator in BINARY_OPERATORS:
            return BINARY_OPERATORS[node.operator][0]
        if node.arity == 1 and node.operator in UNARY_OPERATORS:
            return UNARY_PRECEDENCE
    if isinstance(node, Literal) and isinstance(node.value, (int, float)) \
            and not isinstance(node.value, bool) and node.value < 0:
        return UNARY_PRECEDENCE
    return UNARY_PRECEDENCE + 1


def _operand(node, minimum):
    text = to_source(node)
    return f"({text})" if _precedence(node) < minimum else text


def _literal_source(value):
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return '"' + "".join(_ESCAPES.get(c, c) for c in value) + '"'
    if isinstance(value, tuple):
        return "{" + ", ".join(to_source(v) for v in value) + "}"
    return str(value)


def _items_source(nodes):
    parts = []
    for node in nodes:
        if is_tuple(node, 2) and isinstance(node.value[0], Literal) \
                and isinstance(node.value[0].value, Atom):
            parts.append(f"{node.value[0].value.name}: {to_source(node.value[1])}")
        else:
            parts.append(to_source(node))
    return ", ".join(parts)


def _indented(node):
    statements = node.arguments if is_call(node, "__block__") else (node,)
    lines = []
    for statement in statements:
        lines.extend("  " + line for line in to_source(statement).splitlines())
    return "\n".join(lines)


def _split_block_keywords(keywords):
    """Split trailing do:/else: pairs off a keyword list when a branch holds several statements."""
    elements = keywords.elements
    keys = [e.value[0].value.name for e in elements]
    if keys[-2:] == ["do", "else"]:
        start = len(keys) - 2
    elif keys[-1] == "do":
        start = len(keys) - 1
    else:
        return elements, ()
    blocks = elements[start:]
    if not any(is_call(e.value[1], "__block__") for e in blocks):
        return elements, ()
    return elements[:start], blocks


def _call_source(op, args):
    if not args or not is_keywords(args[-1]):
        return f"{op}({', '.join(to_source(a) for a in args)})"
    inline, blocks = _split_block_keywords(args[-1])
    rendered = [to_source(a) for a in args[:-1]]
    if inline:
        rendered.append(_items_source(inline))
    head = f"{op}({', '.join(rendered)})"
    if not blocks:
        return head
    parts = [head + " do"]
    for index, element in enumerate(blocks):
        if index:
            parts.append("else")
        parts.append(_indented(element.value[1]))
    parts.append("end")
    return "\n".join(parts)


def to_source(node):
    """Render a node back to surface syntax."""
    if isinstance(node, Literal):
        return _literal_source(node.value)

    if isinstance(node, Identifier):
        return f"var!({node.name})" if node.escape else node.name

    if isinstance(node, Sequence):
        return "[" + _items_source(node.elements) + "]"

    if isinstance(node, Call):
        op, args = node.operator, node.arguments
        if op == "__block__":
            statements = [to_source(a) for a in args]
            separator = "\n" if any("\n" in s for s in statements) else "; "
            return separator.join(statements)
        if len(args) == 2 and op in BINARY_OPERATORS:
            prec, right = BINARY_OPERATORS[op]
            left_min, right_min = (prec + 1, prec) if right else (prec, prec + 1)
            return f"{_operand(args[0], left_min)} {op} {_operand(args[1], right_min)}"
        if len(args) == 1 and op in UNARY_OPERATORS:
            return UNARY_OPERATORS[op] + _operand(args[0], UNARY_PRECEDENCE)
        return _call_source(op, args)

    raise TypeError(f"Not a node: {node!r}")
