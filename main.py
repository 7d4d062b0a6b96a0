import argparse
import logging
import sys

from errors import ExquoteError
from evaluator import BindingEnvironment, evaluate, inspect
from expander import DEFAULT_MAX_PASSES, Expansion
from kernel import default_registry
from quoter import quote

DEFAULT_CODE = 'unless(2 == 5) do "block entered" end'


def build_parser():
    parser = argparse.ArgumentParser(
        description="Quote, macro-expand and evaluate an Elixir-flavoured expression"
    )
    parser.add_argument("source", nargs="?", default=DEFAULT_CODE,
                        help="Expression text, or a .ex/.exs file containing it")
    parser.add_argument("--once", action="store_true",
                        help="Run a single expansion pass (expand_once) instead of expanding fully")
    parser.add_argument("--no-eval", action="store_true",
                        help="Stop after expansion")
    parser.add_argument("--max-passes", type=int, default=DEFAULT_MAX_PASSES,
                        help="Give up after this many expanding passes (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log every expansion step")
    return parser


def read_source(source):
    if source.endswith(".ex") or source.endswith(".exs"):
        with open(source, "r") as f:
            return f.read()
    return source


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        code = read_source(args.source)

        print("Parsing Code...")
        tree = quote(code)

        print("Expanding Macros...")
        expansion = Expansion(tree, default_registry(), args.max_passes)
        tree = expansion.step() if args.once else expansion.run()
        print(f"Expanded ({expansion.state.value}, {expansion.passes} pass(es)): {tree}")

        if args.no_eval:
            return 0

        print("Evaluating...")
        value = evaluate(tree, BindingEnvironment())
        print(f"Result: {inspect(value)}")
        return 0

    except (ExquoteError, OSError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
