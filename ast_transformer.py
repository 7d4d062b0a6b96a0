import re
from typing import Any, NamedTuple

from lark import Transformer, v_args

from ast_nodes import Atom, Call, Identifier, Literal, Sequence, keyword_pair
from errors import ParseError

_STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}


class _Keyword(NamedTuple):
    # A `key: value` item; only valid at the tail of an argument list.
    key: str
    value: Any


def _metadata(meta):
    if meta.empty:
        return {}
    return {"line": meta.line, "column": meta.column}


def _block(expressions):
    if not expressions:
        return Literal(None)
    if len(expressions) == 1:
        return expressions[0]
    return Call("__block__", tuple(expressions))


def _split_keywords(items, where):
    """Split parsed items into leading positional nodes and trailing keywords."""
    positional, keywords = [], []
    for item in items or []:
        if isinstance(item, _Keyword):
            keywords.append(keyword_pair(item.key, item.value))
        elif keywords:
            raise ParseError(f"Keyword arguments must come last in {where}", str(item))
        else:
            positional.append(item)
    return positional, keywords


class ExpressionTransformer(Transformer):
    def start(self, items):
        return _block(items[0] or [])

    def body(self, items):
        # expr (_SEP+ expr)*; separators are filtered out by the grammar
        return items

    # --- Operators ---
    @v_args(meta=True)
    def binop(self, meta, items):
        left, op, right = items
        return Call(str(op), (left, right), _metadata(meta))

    @v_args(meta=True)
    def unop(self, meta, items):
        op, operand = items
        return Call(str(op), (operand,), _metadata(meta))

    # --- Calls ---
    @v_args(meta=True)
    def call(self, meta, items):
        callee, arguments, do_block = items
        name = str(callee)
        positional, keywords = _split_keywords(arguments, f"call to {name}")

        if name == "var!":
            if len(positional) != 1 or keywords or do_block or not isinstance(positional[0], Identifier):
                raise ParseError("var! expects a single variable name", name, meta.start_pos if not meta.empty else None)
            return Identifier(positional[0].name, escape=True)

        keywords.extend(do_block or [])
        if keywords:
            positional.append(Sequence(tuple(keywords)))
        return Call(name, tuple(positional), _metadata(meta))

    def do_block(self, items):
        pairs = [keyword_pair("do", _block(items[0] or []))]
        if len(items) > 1:
            pairs.append(items[1])
        return pairs

    def else_block(self, items):
        return keyword_pair("else", _block(items[0] or []))

    def items(self, items):
        return items

    def kw_pair(self, items):
        key, value = items
        return _Keyword(str(key)[:-1], value)

    # --- Literals ---
    def identifier(self, items):
        return Identifier(str(items[0]))

    def number(self, items):
        text = str(items[0])
        if "." in text or "e" in text or "E" in text:
            return Literal(float(text))
        return Literal(int(text))

    def string(self, items):
        # Remove quotes
        raw = str(items[0])[1:-1]
        return Literal(re.sub(r"\\(.)", lambda m: _STRING_ESCAPES.get(m.group(1), m.group(1)), raw))

    def atom(self, items):
        return Literal(Atom(str(items[0])[1:]))

    def const_true(self, items):
        return Literal(True)

    def const_false(self, items):
        return Literal(False)

    def const_nil(self, items):
        return Literal(None)

    def tuple(self, items):
        positional, keywords = _split_keywords(items[0], "tuple")
        if keywords:
            positional.append(Sequence(tuple(keywords)))
        return Literal(tuple(positional))

    def list(self, items):
        positional, keywords = _split_keywords(items[0], "list")
        return Sequence(tuple(positional + keywords))
