import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ast_nodes import (
    BINARY_OPERATORS, SPECIAL_FORMS, UNARY_OPERATORS,
    Call, Identifier, Literal, Node, Sequence, escape, iter_nodes,
)
from errors import ExpansionLimitExceeded, NoMatchingClause, RegistryFrozen, UnknownMacro

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 100

# Names that can never be macros: special forms and primitive operators.
RESERVED_NAMES = SPECIAL_FORMS | set(BINARY_OPERATORS) | set(UNARY_OPERATORS)

_scope_ids = itertools.count(1)


@dataclass(frozen=True)
class MacroScope:
    """Scope tag given to the variables one macro invocation introduces."""
    macro: str
    id: int

    def __str__(self):
        return f"{self.macro}#{self.id}"


@dataclass
class MacroClause:
    handler: Callable[..., Any]
    guard: Optional[Callable[..., bool]] = None

    def matches(self, arguments):
        return self.guard is None or bool(self.guard(*arguments))


@dataclass
class MacroDefinition:
    name: str
    arity: int
    clauses: List[MacroClause] = field(default_factory=list)

    @property
    def key(self):
        return (self.name, self.arity)

    def expand(self, arguments):
        """Apply the first clause accepting `arguments`; returns a Node."""
        for clause in self.clauses:
            if clause.matches(arguments):
                return escape(clause.handler(*arguments))
        raise NoMatchingClause(self.name, arguments)


class MacroRegistry:
    """Macro definitions keyed by (name, arity).

    Open for registration until frozen; expansion freezes it on first use
    and only reads from it afterwards.

    Usage::

        registry = MacroRegistry()

        @registry.defmacro("unless", 2)
        def unless(expr, block):
            ...
    """

    def __init__(self):
        self._macros: Dict[Tuple[str, int], MacroDefinition] = {}
        self._frozen = False
        self._lock = threading.Lock()

    # ---------------------------------------------------------------- register

    def defmacro(self, name, arity, when=None):
        """Decorator registering a function as one clause of macro name/arity.

        Clauses are tried in registration order; `when` receives the raw
        argument nodes and decides whether this clause applies.
        """
        def decorator(fn):
            self.register(name, arity, fn, when)
            return fn
        return decorator

    def register(self, name, arity, handler, when=None):
        if name in RESERVED_NAMES:
            raise ValueError(f"{name} is a special form and cannot be defined as a macro")
        with self._lock:
            if self._frozen:
                raise RegistryFrozen(f"Cannot register {name}/{arity}: registry is frozen")
            definition = self._macros.get((name, arity))
            if definition is None:
                definition = self._macros[(name, arity)] = MacroDefinition(name, arity)
            definition.clauses.append(MacroClause(handler, when))
        logger.debug("Registered macro clause %s/%d (%d clause(s))", name, arity, len(definition.clauses))
        return definition

    def freeze(self):
        with self._lock:
            if not self._frozen:
                self._frozen = True
                logger.debug("Macro registry frozen with %d macro(s)", len(self._macros))

    @property
    def frozen(self):
        return self._frozen

    # ------------------------------------------------------------------ lookup

    def lookup(self, name, arity):
        if name in RESERVED_NAMES:
            return None
        return self._macros.get((name, arity))

    def fetch(self, name, arity):
        definition = self.lookup(name, arity)
        if definition is None:
            raise UnknownMacro(name, arity)
        return definition

    def is_macro_call(self, node):
        return isinstance(node, Call) and self.lookup(node.operator, node.arity) is not None

    def names(self):
        return sorted(f"{name}/{arity}" for name, arity in self._macros)

    def __contains__(self, key):
        return self.lookup(*key) is not None

    def __len__(self):
        return len(self._macros)


def hygienize(tree, arguments, scope):
    """Tag the variables a macro introduced with `scope`.

    Subtrees that came from the caller (`arguments`, matched by identity)
    are left as they are. Variables wrapped in var! are turned into plain
    caller-scope variables.
    """
    caller = {id(node) for argument in arguments for node in iter_nodes(argument)}

    def visit(node):
        if id(node) in caller:
            return node
        if isinstance(node, Identifier):
            if node.escape:
                return Identifier(node.name)
            if node.scope is None:
                return Identifier(node.name, scope)
            return node
        if isinstance(node, Call):
            if node.operator == "quote":
                return node
            return Call(node.operator, tuple(visit(a) for a in node.arguments), node.metadata)
        if isinstance(node, Sequence):
            return Sequence(tuple(visit(e) for e in node.elements))
        if isinstance(node, Literal) and isinstance(node.value, tuple):
            return Literal(tuple(visit(e) for e in node.value))
        return node

    return visit(tree)


class Expander:
    """One outside-in pass over a tree.

    Every macro call found is replaced by its expansion; the pass does not
    look inside a replacement, so macro calls it produced wait for the
    next pass.
    """

    def __init__(self, registry):
        self.registry = registry
        self.substitutions = 0

    def expand_pass(self, tree):
        self.substitutions = 0
        return self._visit(tree)

    def _visit(self, node):
        if isinstance(node, Call):
            if node.operator == "quote":
                return node
            definition = self.registry.lookup(node.operator, node.arity)
            if definition is not None:
                return self._invoke(definition, node)
            arguments = self._visit_all(node.arguments)
            if arguments is node.arguments:
                return node
            return Call(node.operator, arguments, node.metadata)

        if isinstance(node, Sequence):
            elements = self._visit_all(node.elements)
            return node if elements is node.elements else Sequence(elements)

        if isinstance(node, Literal) and isinstance(node.value, tuple):
            elements = self._visit_all(node.value)
            return node if elements is node.value else Literal(elements)

        return node

    def _visit_all(self, nodes):
        visited = tuple(self._visit(n) for n in nodes)
        if all(new is old for new, old in zip(visited, nodes)):
            return nodes
        return visited

    def _invoke(self, definition, call):
        result = definition.expand(call.arguments)
        scope = MacroScope(definition.name, next(_scope_ids))
        self.substitutions += 1
        logger.debug("Expanded %s/%d (line %s) as %s", definition.name, definition.arity,
                     call.metadata.get("line", "?"), scope)
        return hygienize(result, call.arguments, scope)


class ExpansionState(Enum):
    UNEXPANDED = "unexpanded"
    PARTIALLY_EXPANDED = "partially_expanded"
    FULLY_EXPANDED = "fully_expanded"
    FAILED = "failed"


class Expansion:
    """Expansion of one tree against one registry.

    `passes` counts the passes that substituted at least one macro call;
    at most `max_passes` of them are allowed.
    """

    def __init__(self, tree, registry, max_passes=DEFAULT_MAX_PASSES):
        self.tree: Node = tree
        self.registry = registry
        self.max_passes = max_passes
        self.state = ExpansionState.UNEXPANDED
        self.passes = 0
        self.substitutions = 0
        self._expander = Expander(registry)

    @property
    def done(self):
        return self.state in (ExpansionState.FULLY_EXPANDED, ExpansionState.FAILED)

    def step(self):
        if self.done:
            return self.tree
        self.registry.freeze()

        try:
            tree = self._expander.expand_pass(self.tree)
        except Exception:
            self.state = ExpansionState.FAILED
            raise

        count = self._expander.substitutions
        if count == 0:
            self.state = ExpansionState.FULLY_EXPANDED
            logger.debug("Expansion reached a fixed point after %d pass(es)", self.passes)
            return self.tree

        if self.passes >= self.max_passes:
            self.state = ExpansionState.FAILED
            raise ExpansionLimitExceeded(self.passes, self.tree)

        self.passes += 1
        self.substitutions += count
        self.tree = tree
        self.state = ExpansionState.PARTIALLY_EXPANDED
        logger.debug("Pass %d expanded %d macro call(s)", self.passes, count)
        return self.tree

    def run(self):
        while not self.done:
            self.step()
        return self.tree


def expand_once(tree, registry):
    """Run a single expansion pass over `tree`."""
    return Expansion(tree, registry).step()


def expand_fully(tree, registry, max_passes=DEFAULT_MAX_PASSES):
    """Expand until no registered macro call is left."""
    return Expansion(tree, registry, max_passes).run()
