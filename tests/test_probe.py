"""Tests for jsrepl.probe (declared-name discovery and unit synthesis)."""

from __future__ import annotations

from jsrepl.probe import (
    build_probe_source,
    build_unit_source,
    declared_names,
    scan_declarations,
)


class TestDeclaredNames:
    def test_top_level_declarations_in_source_order(self) -> None:
        code = "let a = 1;\nconst b = 2;\nvar c = 3;\nfunction f() {}\nclass K {}"
        assert declared_names(code) == ["a", "b", "c", "f", "K"]

    def test_destructuring_targets(self) -> None:
        code = "const { a, b: [c, d = 1] } = obj;\nlet [e, , ...tail] = arr;"
        assert declared_names(code) == ["a", "c", "d", "e", "tail"]

    def test_hoisted_var_in_blocks_and_loops(self) -> None:
        code = "if (ok) { var inner = 1; }\nfor (var i = 0; i < 3; i++) { var j = i; }"
        assert declared_names(code) == ["inner", "i", "j"]

    def test_block_scoped_declarations_are_not_top_level(self) -> None:
        assert declared_names("{ let hidden = 1; const also = 2; }") == []

    def test_declarations_inside_functions_are_ignored(self) -> None:
        code = "function outer() { var local = 1; }\nconst g = () => { var other = 2; };"
        assert declared_names(code) == ["outer", "g"]

    def test_bare_return_and_await_are_allowed(self) -> None:
        code = "const v = await Promise.resolve(1);\nreturn v;"
        assert declared_names(code) == ["v"]

    def test_duplicates_collapsed(self) -> None:
        assert declared_names("var x = 1;\nvar x = 2;") == ["x"]

    def test_unparseable_code_yields_no_names(self) -> None:
        assert declared_names("let = ;") == []

    def test_code_closing_the_wrapper_yields_no_names(self) -> None:
        assert declared_names("}); (function () {") == []


class TestTokenScan:
    def test_parsed_code_reports_no_error(self) -> None:
        assert scan_declarations("let a = 1;") == (["a"], None)

    def test_newer_syntax_falls_back_to_tokens(self) -> None:
        code = (
            "let a = obj?.b ?? 1, b = 2;\n"
            "const { c, d: e, f = g } = source;\n"
            "function* gen() { let inner = 1; }\n"
            "class K { field = 1; }\n"
            "if (a) { let nested = 1; }"
        )

        names, error = scan_declarations(code)

        assert names == ["a", "b", "c", "e", "f", "gen", "K"]
        assert error is not None

    def test_statements_without_semicolons(self) -> None:
        names, _ = scan_declarations("let a = x?.y\nconst b = 2\nreturn a")

        assert names == ["a", "b"]

    def test_initializer_identifiers_are_not_names(self) -> None:
        names, _ = scan_declarations("let total = price * count ?? 0;")

        assert names == ["total"]


class TestUnitSource:
    def test_probe_skips_reserved_names(self) -> None:
        source = build_probe_source(["visible", "_internal"])
        assert '__captured["visible"] = visible' in source
        assert "_internal" not in source

    def test_async_unit_by_default(self) -> None:
        source = build_unit_source("return 1;", [], await_promises=True)
        assert source.startswith("return (async function () {")
        assert source.endswith("}).call(this);")

    def test_sync_unit_without_await_promises(self) -> None:
        source = build_unit_source("return 1;", [], await_promises=False)
        assert source.startswith("return (function () {")

    def test_probe_precedes_user_code(self) -> None:
        source = build_unit_source("let x = 1;", ["x"], await_promises=True)
        assert source.index("__host.registerProbe") < source.index("let x = 1;")
