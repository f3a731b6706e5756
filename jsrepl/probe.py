"""Variable capture probe: find and harvest the top-level bindings a snippet defines.

The executable unit wraps user code in a function, so its top-level
``let``/``const``/``var`` declarations are locals that cannot be reached by
enumerating the global object afterwards. Instead the probe:

1. Parses the snippet with esprima to learn which names it declares at the
   top level of the unit (including hoisted ``var`` declarations nested in
   blocks and loops, and destructuring targets). Syntax esprima cannot parse
   falls back to a scan of the token stream for top-level declarations.
2. Prepends a closure over those names to the unit. Closures see later
   declarations in the same scope, so the closure can read every declared
   name after the unit settles, even after an early ``return`` or a throw.
   Names still in their temporal dead zone are skipped.

The host prelude combines the closure's values with new or changed
enumerable globals, drops excluded names and function values, and records
the survivors in ``_userVariables``.
"""

from __future__ import annotations

import json
from typing import Any

import esprima
from esprima.error_handler import Error as EsprimaError

RESERVED_PREFIX = "_"

_FUNCTION_SCOPES = frozenset({
    "FunctionDeclaration",
    "FunctionExpression",
    "ArrowFunctionExpression",
    "ClassDeclaration",
    "ClassExpression",
})

_OPENERS = frozenset({"(", "[", "{"})
_CLOSERS = frozenset({")", "]", "}"})

# Keywords that start a new statement and cannot continue an initializer
_STATEMENT_KEYWORDS = frozenset({
    "let", "const", "var", "if", "for", "while", "do", "return", "throw", "try", "switch",
})


def _pattern_names(pattern: Any, names: dict[str, None]) -> None:
    """Collect identifiers bound by a declaration target."""
    if pattern is None:
        return
    kind = pattern.type
    if kind == "Identifier":
        names[pattern.name] = None
    elif kind == "ObjectPattern":
        for prop in pattern.properties:
            if prop.type == "RestElement":
                _pattern_names(prop.argument, names)
            else:
                _pattern_names(prop.value, names)
    elif kind == "ArrayPattern":
        for element in pattern.elements:
            _pattern_names(element, names)
    elif kind == "AssignmentPattern":
        _pattern_names(pattern.left, names)
    elif kind == "RestElement":
        _pattern_names(pattern.argument, names)


def _children(node: Any) -> list[Any]:
    children = []
    for value in vars(node).values():
        if isinstance(value, list):
            children.extend(item for item in value if hasattr(item, "type"))
        elif hasattr(value, "type") and not isinstance(value, str):
            children.append(value)
    return children


def _hoisted_vars(node: Any, names: dict[str, None]) -> None:
    """Collect ``var`` declarations nested in blocks, stopping at inner functions."""
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in _FUNCTION_SCOPES:
            continue
        if current.type == "VariableDeclaration" and current.kind == "var":
            for declarator in current.declarations:
                _pattern_names(declarator.id, names)
        stack.extend(reversed(_children(current)))


def _parsed_names(program: Any) -> list[str]:
    if len(program.body) != 1 or program.body[0].type != "ExpressionStatement":
        return []
    wrapper = program.body[0].expression
    if wrapper.type != "FunctionExpression":
        return []

    names: dict[str, None] = {}
    for statement in wrapper.body.body:
        if statement.type == "VariableDeclaration":
            for declarator in statement.declarations:
                _pattern_names(declarator.id, names)
        elif statement.type in ("FunctionDeclaration", "ClassDeclaration"):
            if statement.id is not None:
                names[statement.id.name] = None
        else:
            _hoisted_vars(statement, names)
    return list(names)


def _is_punctuator(token: Any, *values: str) -> bool:
    return token is not None and token.type == "Punctuator" and token.value in values


def _declarator_names(tokens: list[Any], index: int, names: dict[str, None]) -> int:
    """Collect the targets of one ``let``/``const``/``var`` statement.

    Returns the index of the first token after the statement.
    """
    depth = 0
    in_target = True
    while index < len(tokens):
        token = tokens[index]
        if token.type == "Punctuator":
            if token.value in _OPENERS:
                depth += 1
            elif token.value in _CLOSERS:
                if depth == 0:
                    return index
                depth -= 1
            elif depth == 0 and token.value == ";":
                return index + 1
            elif depth == 0 and token.value == "=":
                in_target = False
            elif depth == 0 and token.value == ",":
                in_target = True
        elif depth == 0 and token.type == "Keyword" and token.value in _STATEMENT_KEYWORDS:
            return index
        elif token.type == "Identifier" and in_target:
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            preceding = tokens[index - 1]
            # skip property keys and default values inside patterns
            if not _is_punctuator(following, ":") and not _is_punctuator(preceding, "="):
                names[token.value] = None
        index += 1
    return index


def _scanned_names(code: str) -> list[str]:
    """Find top-level declarations from the token stream alone.

    Used for syntax the parser does not support. Hoisted ``var``
    declarations inside blocks are not found this way.
    """
    try:
        tokens = list(esprima.tokenize(code))
    except (EsprimaError, RecursionError):
        return []

    names: dict[str, None] = {}
    depth = 0
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token.type == "Punctuator":
            if token.value in _OPENERS:
                depth += 1
            elif token.value in _CLOSERS:
                depth = max(0, depth - 1)
        elif depth == 0 and token.type == "Keyword":
            if token.value in ("let", "const", "var"):
                index = _declarator_names(tokens, index, names)
            elif token.value in ("function", "class"):
                if index < len(tokens) and _is_punctuator(tokens[index], "*"):
                    index += 1
                if index < len(tokens) and tokens[index].type == "Identifier":
                    names[tokens[index].value] = None
    # contextual keywords the tokenizer reports as identifiers
    return [name for name in names if name not in ("await", "yield")]


def scan_declarations(code: str) -> tuple[list[str], str | None]:
    """Return the names a snippet declares at the top level of its unit.

    The snippet is parsed with esprima. When that fails, for example on
    syntax newer than esprima supports (optional chaining, class fields) that
    the engine still runs, the names are recovered from the token stream and
    the parse error is returned alongside them.

    Args:
        code: JavaScript snippet, in statement form (bare ``return`` allowed)

    Returns:
        Tuple of (declared names in source order without duplicates, parse
        error message or None)
    """
    try:
        program = esprima.parseScript(f"(async function () {{\n{code}\n}})")
    except (EsprimaError, RecursionError) as exc:
        return _scanned_names(code), str(exc)
    return _parsed_names(program), None


def declared_names(code: str) -> list[str]:
    """Return the names a snippet declares at the top level of its unit."""
    return scan_declarations(code)[0]


def build_probe_source(names: list[str]) -> str:
    """Build the JavaScript statement that registers the probe closure."""
    reads = "\n".join(
        f"  try {{ __captured[{json.dumps(name)}] = {name}; }} catch (__e) {{}}"
        for name in names
        if not name.startswith(RESERVED_PREFIX)
    )
    return (
        "__host.registerProbe(function () {\n"
        "  const __captured = {};\n"
        f"{reads}\n"
        "  return __captured;\n"
        "});"
    )


def build_unit_source(code: str, names: list[str], await_promises: bool) -> str:
    """Synthesize the body of the executable unit.

    The unit registers the probe, then runs the caller's code verbatim inside
    a function so a bare ``return`` yields the unit's value and falling
    through yields ``undefined``. With ``await_promises`` the function is
    async, so ``await`` is allowed and throws surface as rejections.
    """
    head = "async function" if await_promises else "function"
    return (
        f"return ({head} () {{\n"
        f"{build_probe_source(names)}\n"
        f"{code}\n"
        "}).call(this);"
    )
