"""
Restricted execution context for script bodies.

Scripts are Python function bodies that ``return`` their result. Two
layers stand between a script and the host:

1. ``validate_code`` rejects source that textually mentions imports,
   dynamic evaluation, OS/process access, ambient globals, or reflection.
2. ``sandbox_main`` runs in a separate process with CPU, memory and
   file-descriptor limits. It refuses private names and introspection
   attributes (frames, generators, tracebacks), then executes the body
   with a curated builtins table plus the documented bindings: the
   parameters, ``math``, ``clock``, ``json``, and a no-op ``log``.

The parent process owns the deadline and terminates the child, so a
runaway script can never outlive its turn.
"""

import ast
import builtins
import json as _json
import math as _math
import random as _random
import re
import sys
import textwrap
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

SCRIPT_FUNCTION = "run_script"

# (label, pattern) pairs; each match yields one validation error
DANGEROUS_PATTERNS: list[tuple[str, re.Pattern]] = [
    # dynamic import
    ("import statement", re.compile(r"\bimport\b")),
    ("__import__", re.compile(r"__import__")),
    ("importlib", re.compile(r"\bimportlib\b")),
    ("require()", re.compile(r"\brequire\s*\(")),
    # dynamic evaluation / function construction
    ("eval()", re.compile(r"\beval\s*\(")),
    ("exec()", re.compile(r"\bexec\s*\(")),
    ("compile()", re.compile(r"\bcompile\s*\(")),
    ("Function()", re.compile(r"\bFunction\s*\(")),
    ("FunctionType", re.compile(r"\b(FunctionType|CodeType|LambdaType)\b")),
    # process / OS access
    ("os access", re.compile(r"\bos\.")),
    ("sys access", re.compile(r"\bsys\.")),
    ("process access", re.compile(r"\bprocess\.")),
    ("subprocess", re.compile(r"\bsubprocess\b")),
    ("child_process", re.compile(r"\bchild_process\b")),
    ("exit()", re.compile(r"\b(exit|quit)\s*\(")),
    # filesystem / network
    ("open()", re.compile(r"\bopen\s*\(")),
    ("filesystem access", re.compile(r"\b(pathlib|shutil|fs\.)")),
    ("socket", re.compile(r"\bsocket\b")),
    ("__file__", re.compile(r"__(file|dirname|filename)")),
    # ambient globals
    ("__builtins__", re.compile(r"__builtins__")),
    ("globals()", re.compile(r"\b(globals|locals|vars)\s*\(")),
    ("global object", re.compile(r"\b(globalThis|global\.)")),
    ("browser globals", re.compile(
        r"\b(window|document|localStorage|sessionStorage|XMLHttpRequest|WebSocket|Worker)\b"
    )),
    ("fetch()", re.compile(r"\bfetch\s*\(")),
    # reflection / prototype manipulation
    ("__proto__", re.compile(r"__proto__")),
    (".constructor.", re.compile(r"\.constructor\.")),
    ("class introspection", re.compile(
        r"__(class|bases|base|mro|subclasses|globals|code|closure|dict|getattribute)__"
    )),
    ("frame introspection", re.compile(
        r"\.(gi|cr|ag|tb|co)_\w+|\.f_(back|globals|locals|builtins|code|trace)\b"
    )),
    ("attribute reflection", re.compile(r"\b(getattr|setattr|delattr|hasattr)\s*\(")),
    ("property descriptors", re.compile(r"\b(getOwnPropertyDescriptor|defineProperty)\b")),
    ("Reflect/Proxy", re.compile(r"\b(Reflect|Proxy)\b")),
]


class CodeValidationError(ValueError):
    """Raised when script source matches one or more blacklisted patterns."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Code validation failed: " + "; ".join(errors))
        self.errors = errors


def validate_code(code: str) -> tuple[bool, list[str]]:
    """
    Scan script source for blacklisted patterns.

    Returns:
        (valid, errors) with one error per matched pattern.
    """
    errors = [
        f"Dangerous pattern detected: {label}"
        for label, pattern in DANGEROUS_PATTERNS
        if pattern.search(code)
    ]
    return (not errors), errors


def ensure_valid(code: str) -> None:
    """
    Raises:
        CodeValidationError: If any blacklisted pattern matches.
    """
    valid, errors = validate_code(code)
    if not valid:
        raise CodeValidationError(errors)


SAFE_BUILTINS: dict[str, Any] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
        "float", "int", "isinstance", "len", "list", "map", "max", "min",
        "pow", "range", "reversed", "round", "set", "sorted", "str", "sum",
        "tuple", "zip",
        "ArithmeticError", "Exception", "KeyError", "IndexError",
        "TypeError", "ValueError", "ZeroDivisionError",
    )
}


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


def build_bindings(params: dict[str, Any]) -> dict[str, Any]:
    """Globals visible to a script: parameters plus restricted helpers."""
    math = SimpleNamespace(
        abs=abs, floor=_math.floor, ceil=_math.ceil, round=round,
        trunc=_math.trunc, sqrt=_math.sqrt, pow=_math.pow, exp=_math.exp,
        log=_math.log, log10=_math.log10, min=min, max=max,
        random=_random.random, pi=_math.pi, e=_math.e,
        isnan=_math.isnan, isfinite=_math.isfinite,
    )
    clock = SimpleNamespace(now=lambda: datetime.now(timezone.utc))
    json = SimpleNamespace(dumps=_json.dumps, loads=_json.loads)

    bindings: dict[str, Any] = {
        "__builtins__": dict(SAFE_BUILTINS),
        "math": math,
        "clock": clock,
        "json": json,
        "log": _noop,
    }
    bindings.update(params)
    return bindings


# Generator, coroutine, frame, traceback and code-object attributes lead
# back to the host's frames and module globals.
_INTROSPECTION_PREFIXES = ("gi_", "cr_", "ag_", "f_", "tb_", "co_")
# str.format looks attributes up itself, outside this checker
_BLOCKED_ATTRIBUTES = frozenset({"mro", "format", "format_map", "with_traceback"})


def is_blocked_attribute(attr: str) -> bool:
    return (
        attr.startswith("_")
        or attr.startswith(_INTROSPECTION_PREFIXES)
        or attr in _BLOCKED_ATTRIBUTES
    )


class _PrivateAccessChecker(ast.NodeVisitor):
    """Rejects private names and attributes that expose interpreter internals."""

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            raise PermissionError(f"Access to '{node.id}' is not allowed")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if is_blocked_attribute(node.attr):
            raise PermissionError(f"Access to attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Import(self, node: ast.Import) -> None:
        raise PermissionError("Imports are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        raise PermissionError("Imports are not allowed")


def compile_script(code: str) -> Any:
    """Wrap a script body in a function definition and compile it."""
    body = textwrap.indent(textwrap.dedent(code), "    ") if code.strip() else "    pass"
    source = f"def {SCRIPT_FUNCTION}():\n{body}\n"
    tree = ast.parse(source, filename="<script>")
    _PrivateAccessChecker().visit(tree)
    return compile(tree, "<script>", "exec")


def _lower_limit(resource: Any, which: int, value: int) -> None:
    soft, hard = resource.getrlimit(which)
    limit = value if hard == resource.RLIM_INFINITY else min(value, hard)
    resource.setrlimit(which, (limit, limit))


def apply_limits(cpu_limit_sec: int, memory_limit_mb: int) -> None:
    """
    Cap CPU time, address space and file descriptors for this process.

    Must run after the result pipe is open: the descriptor cap only
    stops new files and sockets from being opened.
    """
    if sys.platform == "win32":
        return
    import resource

    if cpu_limit_sec > 0:
        _lower_limit(resource, resource.RLIMIT_CPU, cpu_limit_sec)
    # RLIMIT_AS is not enforced on macOS
    if memory_limit_mb > 0 and sys.platform.startswith("linux"):
        _lower_limit(resource, resource.RLIMIT_AS, memory_limit_mb * 1024 * 1024)
    _lower_limit(resource, resource.RLIMIT_NOFILE, 0)


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def sandbox_main(
    code: str,
    params: dict[str, Any],
    conn: Any,
    cpu_limit_sec: int,
    memory_limit_mb: int = 0,
) -> None:
    """
    Child-process entry point.

    Sends exactly one message on ``conn``: ``("ok", value)``,
    ``("rejected", message)`` or ``("error", message)``.
    """
    try:
        code_obj = compile_script(code)
    except PermissionError as exc:
        conn.send(("rejected", _error_text(exc)))
        conn.close()
        return
    except SyntaxError as exc:
        conn.send(("error", _error_text(exc)))
        conn.close()
        return

    try:
        namespace = build_bindings(params)
        apply_limits(cpu_limit_sec, memory_limit_mb)
        exec(code_obj, namespace)
        value = namespace[SCRIPT_FUNCTION]()
    except Exception as exc:
        conn.send(("error", _error_text(exc)))
        conn.close()
        return

    try:
        conn.send(("ok", value))
    except Exception as exc:
        conn.send(("error", f"Script returned a value that cannot be transferred: {exc}"))
    finally:
        conn.close()
