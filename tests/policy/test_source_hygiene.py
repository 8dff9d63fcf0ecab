import ast
import pathlib
import re

BAD = re.compile(r"^\s*(#.*\n)*\s*(pass|\.\.\.|raise NotImplementedError)\s*$", re.DOTALL)
PACKAGE = pathlib.Path("review_aggregator")


def test_no_empty_stub_files():
    for p in PACKAGE.rglob("*.py"):
        text = p.read_text(encoding="utf-8")
        assert text.strip(), f"Empty file: {p}"
        assert not BAD.match(text), f"Empty stub file: {p}"


def test_no_bare_except_or_print():
    for p in PACKAGE.rglob("*.py"):
        tree = ast.parse(p.read_text(encoding="utf-8"))
        for n in ast.walk(tree):
            if isinstance(n, ast.ExceptHandler):
                assert n.type is not None, f"Bare except: {p}:{n.lineno}"
            if isinstance(n, ast.Call) and isinstance(n.func, ast.Name):
                assert n.func.id != "print", f"print() call: {p}:{n.lineno}"
