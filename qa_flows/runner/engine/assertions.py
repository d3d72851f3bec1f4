"""Declarative step assertions evaluated against the current page."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .errors import ConfigurationError
from .types import Assertion, AssertionResult

logger = logging.getLogger("qa_flows.runner.assertions")

DEFAULT_ASSERTION_TIMEOUT_MS = 5000


def _require_selector(assertion: Assertion) -> str:
    if not assertion.selector:
        raise ValueError(f'"{assertion.type}" assertion requires a selector')
    return assertion.selector


def _wait_state(state: str) -> Callable[[Any, Assertion, AssertionResult, int], None]:
    def _check(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
        driver.wait_for_selector(_require_selector(assertion), {"state": state, "timeout": timeout_ms})
        result.passed = True

    return _check


def _text(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
    result.actual = driver.text_content(_require_selector(assertion))
    result.passed = result.actual is not None and result.actual == assertion.expected


def _count(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
    actual = int(driver.count(_require_selector(assertion)))
    result.actual = actual
    expected = assertion.expected
    if isinstance(expected, str) and expected.strip().lstrip("-").isdigit():
        expected = int(expected.strip())
    result.passed = isinstance(expected, int) and not isinstance(expected, bool) and actual == expected


def _value(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
    result.actual = driver.input_value(_require_selector(assertion))
    result.passed = result.actual == assertion.expected


def _attribute(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
    selector = _require_selector(assertion)
    if not assertion.attribute:
        raise ValueError('"attribute" assertion requires an attribute name')
    result.actual = driver.get_attribute(selector, assertion.attribute)
    result.passed = result.actual is not None and result.actual == assertion.expected


def _url(driver: Any, assertion: Assertion, result: AssertionResult, timeout_ms: int) -> None:
    current = driver.url()
    result.actual = current
    result.passed = isinstance(assertion.expected, str) and assertion.expected in (current or "")


ASSERTION_KINDS: dict[str, Callable[[Any, Assertion, AssertionResult, int], None]] = {
    "visible": _wait_state("visible"),
    "hidden": _wait_state("hidden"),
    "text": _text,
    "count": _count,
    "value": _value,
    "attribute": _attribute,
    "url": _url,
}


def check_assertion_kind(assertion: Assertion) -> None:
    if assertion.type not in ASSERTION_KINDS:
        raise ConfigurationError(
            f"Unknown assertion type: {assertion.type}",
            details={"assertionType": assertion.type, "supported": sorted(ASSERTION_KINDS)},
        )


def evaluate_assertion(
    driver: Any,
    assertion: Assertion,
    *,
    timeout_ms: int = DEFAULT_ASSERTION_TIMEOUT_MS,
) -> AssertionResult:
    """Evaluate one assertion; driver failures become a failed result.

    An unknown assertion type raises `ConfigurationError` instead.
    """
    check_assertion_kind(assertion)
    result = AssertionResult(assertion=assertion)
    try:
        ASSERTION_KINDS[assertion.type](driver, assertion, result, timeout_ms)
    except Exception as exc:
        result.passed = False
        result.error = str(exc) or type(exc).__name__
        logger.debug("assertion %s %s failed: %s", assertion.type, assertion.selector or "", result.error)
    return result


__all__ = ["ASSERTION_KINDS", "DEFAULT_ASSERTION_TIMEOUT_MS", "check_assertion_kind", "evaluate_assertion"]
