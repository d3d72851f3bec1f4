from __future__ import annotations

import re

import pytest

from qa_flows.runner.engine.interpolation import (
    InterpolationContext,
    VariableInterpolator,
    available_variables,
    generate_unique_id,
    interpolate_object,
    interpolate_string,
    list_variables,
    preview_interpolation,
)


def _ctx(**overrides) -> InterpolationContext:
    base = {
        "base_url": "https://shop.test",
        "email": "qa@shop.test",
        "password": "s3cret-pass",
        "custom_vars": {"sku": "A-100", "qty": "3"},
    }
    base.update(overrides)
    return InterpolationContext(**base)


@pytest.mark.parametrize("text", ["", "plain text", "$notavar", "{sku}", "price: $5"])
def test_text_without_tokens_is_unchanged(text: str) -> None:
    assert interpolate_string(text, _ctx()) == text


def test_builtins_and_custom_vars_resolve() -> None:
    out = interpolate_string("${baseUrl}/p/${sku}?q=${qty}&u=${credentials.email}&p=${credentials.password}", _ctx())

    assert out == "https://shop.test/p/A-100?q=3&u=qa@shop.test&p=s3cret-pass"


def test_unknown_token_stays_verbatim() -> None:
    assert interpolate_string("a ${nope} b ${sku}", _ctx()) == "a ${nope} b A-100"


def test_time_and_random_builtins_have_expected_shape() -> None:
    interp = VariableInterpolator(_ctx())

    assert re.fullmatch(r"\d{13}", interp.resolve("timestamp"))
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", interp.resolve("date"))
    assert re.fullmatch(r"\d{2}-\d{2}-\d{2}", interp.resolve("time"))
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}", interp.resolve("datetime"))
    assert re.fullmatch(r"[0-9a-f]{6}", interp.resolve("random"))
    assert re.fullmatch(r"[0-9a-f]{8}", interp.resolve("uuid"))


def test_builtins_win_over_custom_vars_with_the_same_name() -> None:
    out = interpolate_string("${baseUrl}", _ctx(custom_vars={"baseUrl": "https://other.test"}))

    assert out == "https://shop.test"


def test_seeded_generators_are_reproducible() -> None:
    template = "${generator.person.fullName} <${faker.internet.email}> ${generator.number.int(1, 5)}"

    first = interpolate_string(template, _ctx(seed=42))
    second = interpolate_string(template, _ctx(seed=42))

    assert first == second
    assert "${" not in first
    assert 1 <= int(first.rsplit(" ", 1)[1]) <= 5


def test_generator_arguments() -> None:
    interp = VariableInterpolator(_ctx(seed=1))

    assert len(interp.resolve("generator.string.alpha(12)")) == 12
    assert re.fullmatch(r"\d{4}", interp.resolve("generator.string.numeric(4)"))
    assert len(interp.resolve('generator.internet.password({"length": 20})')) == 20
    assert interp.resolve("generator.datatype.boolean") in {"true", "false"}


def test_unknown_generator_falls_back_to_verbatim(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="qa_flows.runner.interpolation"):
        out = interpolate_string("x=${generator.nothing.here}", _ctx())

    assert out == "x=${generator.nothing.here}"
    assert "generator.nothing.here" in caplog.text


def test_faker_provider_names_are_reachable() -> None:
    # Fields outside the curated table map onto Faker providers by snake_case name.
    out = interpolate_string("${generator.address.countryCode}", _ctx(seed=3))

    assert re.fullmatch(r"[A-Z]{2}", out)


def test_interpolate_object_walks_values_not_keys() -> None:
    value = {
        "type": "fill",
        "selector": "#${sku}",
        "value": "${credentials.email}",
        "${sku}": ["${qty}", 5, None, True],
    }

    out = interpolate_object(value, _ctx())

    assert out == {
        "type": "fill",
        "selector": "#A-100",
        "value": "qa@shop.test",
        "${sku}": ["3", 5, None, True],
    }
    assert value["selector"] == "#${sku}"


def test_preview_and_listing() -> None:
    preview = preview_interpolation("Hi ${sku} ${ missing }", _ctx())

    assert preview["original"] == "Hi ${sku} ${ missing }"
    assert preview["interpolated"] == "Hi A-100 ${ missing }"
    assert preview["variables"] == ["sku", "missing"]
    assert list_variables(None) == []  # type: ignore[arg-type]


def test_catalogue_and_unique_ids() -> None:
    catalogue = available_variables()

    assert "credentials.email" in catalogue["builtin"]
    assert "generator.person.firstName" in catalogue["person"]
    assert re.fullmatch(r"order-\d+-[0-9a-f]{4}", generate_unique_id("order"))
    assert generate_unique_id() != generate_unique_id()
