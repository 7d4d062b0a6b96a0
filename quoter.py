from lark import Lark
from lark.exceptions import UnexpectedEOF, UnexpectedInput, VisitError

from ast_nodes import Call, Identifier, Literal, Sequence, escape
from ast_transformer import ExpressionTransformer
from errors import ParseError

GRAMMAR = r"""
    start: _SEP* [body]

    body: expr (_SEP+ expr)* _SEP*

    ?expr: match

    ?match: or_expr
          | or_expr MATCH match                          -> binop
    ?or_expr: and_expr
            | or_expr (OR | OROR) and_expr               -> binop
    ?and_expr: comparison
             | and_expr (AND | ANDAND) comparison        -> binop
    ?comparison: concat
               | comparison (EQ | NEQ | LTE | GTE | LT | GT) concat -> binop
    ?concat: sum
           | sum (CONCAT | PLUSPLUS) concat              -> binop
    ?sum: product
        | sum (PLUS | MINUS) product                     -> binop
    ?product: unary
            | product (STAR | SLASH) unary               -> binop
    ?unary: primary
          | (BANG | NOT | MINUS | PLUS) unary            -> unop

    ?primary: NUMBER                                     -> number
            | STRING                                     -> string
            | ATOM                                       -> atom
            | "true"                                     -> const_true
            | "false"                                    -> const_false
            | "nil"                                      -> const_nil
            | NAME                                       -> identifier
            | call
            | "(" expr ")"
            | "{" [items] "}"                            -> tuple
            | "[" [items] "]"                            -> list

    call: (NAME | QUALIFIED_NAME) "(" [items] ")" [do_block]
    do_block: "do" _SEP* [body] else_block? "end"
    else_block: "else" _SEP* [body]

    items: item (_COMMA item)*
    ?item: expr
         | kw_pair
    kw_pair: KEYWORD expr

    MATCH: "="
    OR: "or"
    OROR: "||"
    AND: "and"
    ANDAND: "&&"
    EQ: "=="
    NEQ: "!="
    LTE: "<="
    GTE: ">="
    LT: "<"
    GT: ">"
    CONCAT: "<>"
    PLUSPLUS: "++"
    PLUS: "+"
    MINUS: "-"
    STAR: "*"
    SLASH: "/"
    BANG: "!"
    NOT: "not"

    NUMBER: /\d+(\.\d+)?([eE][+-]?\d+)?/
    STRING: /"(\\.|[^"\\])*"/
    ATOM: /:[a-zA-Z_][a-zA-Z0-9_]*[?!]?/
    QUALIFIED_NAME: /[A-Z][a-zA-Z0-9_]*(\.[A-Z][a-zA-Z0-9_]*)*\.[a-z_][a-zA-Z0-9_]*[?!]?/
    NAME: /[a-z_][a-zA-Z0-9_]*[?!]?/
    KEYWORD.2: /[a-z_][a-zA-Z0-9_]*[?!]?:(?!:)/

    _SEP.2: /([ \t]*(\r?\n|;)[ \t]*)+/
    _COMMA: /,\s*/
    COMMENT: /#[^\n]*/

    %ignore /[ \t]+/
    %ignore COMMENT
"""

parser = Lark(
    GRAMMAR,
    start="start",
    parser="earley",
    lexer="basic",
    propagate_positions=True,
    maybe_placeholders=True,
)


def quote(expression):
    """Convert surface text into its Node tree without evaluating it."""
    try:
        tree = parser.parse(expression)
        return ExpressionTransformer().transform(tree)
    except UnexpectedEOF as e:
        raise ParseError("Unexpected end of input", expression[-20:], len(expression)) from e
    except UnexpectedInput as e:
        pos = e.pos_in_stream
        fragment = ""
        if pos is not None:
            fragment = (expression[pos:pos + 20].splitlines() or [""])[0]
        raise ParseError(f"Syntax error at line {e.line}, column {e.column}", fragment, pos) from e
    except VisitError as e:
        if isinstance(e.orig_exc, ParseError):
            raise e.orig_exc from None
        raise


def _binding_name(key):
    return key.name if isinstance(key, Identifier) else key


def _marker_name(node, operator, bindings):
    # unquote(name) / unquote_splicing(name) with `name` bound
    if isinstance(node, Call) and node.operator == operator and node.arity == 1:
        target = node.arguments[0]
        if isinstance(target, Identifier) and target.name in bindings:
            return target.name
    return None


def _splice(value):
    if isinstance(value, Sequence):
        return value.elements
    if isinstance(value, (list, tuple)):
        return tuple(escape(v) for v in value)
    raise TypeError(f"unquote_splicing expects a list, got {value!r}")


def _unquote_items(items, bindings, nested):
    result = []
    changed = False
    for item in items:
        name = _marker_name(item, "unquote_splicing", bindings)
        if name is not None:
            result.extend(_splice(bindings[name]))
            changed = True
            continue
        new_item = _unquote(item, bindings, nested)
        changed = changed or new_item is not item
        result.append(new_item)
    return tuple(result) if changed else items


def _unquote(node, bindings, nested):
    if isinstance(node, Identifier):
        if not nested and not node.escape and node.name in bindings:
            return escape(bindings[node.name])
        return node

    if isinstance(node, Call):
        name = _marker_name(node, "unquote", bindings)
        if name is not None:
            return escape(bindings[name])
        # Inside a nested quote only explicit markers are substituted
        inner = nested or node.operator == "quote"
        arguments = _unquote_items(node.arguments, bindings, inner)
        if arguments is node.arguments:
            return node
        return Call(node.operator, arguments, node.metadata)

    if isinstance(node, Sequence):
        elements = _unquote_items(node.elements, bindings, nested)
        return node if elements is node.elements else Sequence(elements)

    if isinstance(node, Literal) and isinstance(node.value, tuple):
        elements = _unquote_items(node.value, bindings, nested)
        return node if elements is node.value else Literal(elements)

    return node


def unquote(template, bindings):
    """Substitute bound values into `template`.

    Bound Nodes are spliced in as they are; any other value is escaped
    into a Literal first. Names without a binding are left alone.
    """
    names = {_binding_name(key): value for key, value in bindings.items()}
    if not names:
        return template
    return _unquote(template, names, nested=False)
