"""Option templating against a context-like scope."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from dawnpipe.templating import lookup, parse_opts, render, unescape_expr

pytestmark = pytest.mark.unit


@pytest.fixture
def scope():
    return SimpleNamespace(
        cmd="build",
        cwd="/work/app",
        project={"name": "shop", "version": "1.2.0", "meta": {"team": "web"}},
    )


def test_render_resolves_attributes_and_nested_keys(scope):
    assert render("${cmd}", scope) == "build"
    assert render("${project.name}@${project.version}", scope) == "shop@1.2.0"
    assert render("${ project.meta.team }", scope) == "web"


def test_render_unresolved_reference_is_empty(scope):
    assert render("x-${project.missing}-y", scope) == "x--y"
    assert render("${}", scope) == ""


def test_env_references_read_the_process_environment(scope, monkeypatch):
    monkeypatch.setenv("DAWN_TEST_STAGE", "canary")
    assert render("${env.DAWN_TEST_STAGE}", scope) == "canary"


def test_escaped_reference_survives_as_literal(scope):
    rendered = render(r"\${cmd} is ${cmd}", scope)
    assert rendered == r"\${cmd} is build"
    assert unescape_expr(rendered) == "${cmd} is build"


def test_lookup_distinguishes_missing_from_none():
    scope = SimpleNamespace(value=None)
    assert lookup("value", scope) is None
    assert lookup("absent", scope) is not None


def test_options_without_expressions_are_unchanged(scope):
    options = {
        "entry": "src/index.ts",
        "port": 8001,
        "open": False,
        "inject": ["a.js", "b.js"],
        "extra": None,
        "nested": {"level": {"deep": "value"}},
    }

    assert parse_opts(options, scope) == options


def test_keys_values_and_nested_mappings_are_rendered(scope):
    options = {
        "env": "${cmd}",
        "${cmd}Only": True,
        "banner": {"title": "${project.name}", "tags": ["${cmd}"]},
    }

    assert parse_opts(options, scope) == {
        "env": "build",
        "buildOnly": True,
        # Lists pass through untouched
        "banner": {"title": "shop", "tags": ["${cmd}"]},
    }


def test_key_rendering_to_nothing_keeps_original_key(scope):
    assert parse_opts({"${nope}": 1}, scope) == {"${nope}": 1}


def test_input_is_not_mutated(scope):
    options = {"env": "${cmd}", "nested": {"v": "${cmd}"}}
    parse_opts(options, scope)
    assert options == {"env": "${cmd}", "nested": {"v": "${cmd}"}}
