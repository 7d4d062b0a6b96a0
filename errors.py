class ExquoteError(Exception):
    """Base class for every error raised while quoting, expanding or evaluating."""


class ParseError(ExquoteError):
    def __init__(self, message, fragment="", position=None):
        super().__init__(f"{message}: {fragment!r}" if fragment else message)
        self.fragment = fragment
        self.position = position


class UnknownMacro(ExquoteError):
    def __init__(self, name, arity):
        super().__init__(f"No macro {name}/{arity} is registered")
        self.name = name
        self.arity = arity


class NoMatchingClause(ExquoteError):
    def __init__(self, name, arguments):
        rendered = ", ".join(str(a) for a in arguments)
        super().__init__(f"No clause of macro {name}/{len(arguments)} matches ({rendered})")
        self.name = name
        self.arguments = arguments


class RegistryFrozen(ExquoteError):
    pass


class ExpansionLimitExceeded(ExquoteError):
    def __init__(self, passes, tree):
        super().__init__(f"Macro expansion did not reach a fixed point after {passes} passes")
        self.passes = passes
        self.tree = tree


class EvaluationError(ExquoteError):
    pass


class UnboundIdentifier(EvaluationError):
    def __init__(self, identifier):
        where = "" if identifier.scope is None else f" (macro scope {identifier.scope})"
        super().__init__(f"Undefined variable: {identifier.name}{where}")
        self.identifier = identifier


class ArityMismatch(EvaluationError):
    def __init__(self, operator, expected, actual):
        expected_text = " or ".join(str(n) for n in sorted(expected))
        super().__init__(f"{operator} expects {expected_text} argument(s), got {actual}")
        self.operator = operator
        self.expected = expected
        self.actual = actual


class UndefinedFunction(EvaluationError):
    def __init__(self, name, arity):
        super().__init__(f"Undefined function: {name}/{arity}")
        self.name = name
        self.arity = arity


class MatchError(EvaluationError):
    def __init__(self, pattern, value):
        super().__init__(f"No match of right hand side value: {value!r} against {pattern}")
        self.pattern = pattern
        self.value = value
