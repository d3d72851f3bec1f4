"""
`${name}` interpolation for flow and action definitions.

Resolution order for a token: synthetic data (`generator.` / `faker.` prefix),
built-ins (time, randomness, configuration), then custom variables. Anything
unresolved stays in the output verbatim; misses are logged, never raised.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from faker import Faker

logger = logging.getLogger("qa_flows.runner.interpolation")

_VAR_RE = re.compile(r"\$\{([^}]+)\}")
_CALL_RE = re.compile(r"^(\w+)\((.*)\)$", re.DOTALL)
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

GENERATOR_PREFIXES = ("generator.", "faker.")

BUILTIN_VARIABLES = (
    "timestamp",
    "datetime",
    "date",
    "time",
    "random",
    "uuid",
    "baseUrl",
    "credentials.email",
    "credentials.password",
)


@dataclass(slots=True)
class InterpolationContext:
    base_url: str = ""
    email: str = ""
    password: str = ""
    custom_vars: dict[str, str] = field(default_factory=dict)
    seed: int | None = None


def _count(args: tuple[Any, ...], default: int) -> int:
    if args and isinstance(args[0], (int, float)) and not isinstance(args[0], bool):
        return max(0, int(args[0]))
    if args and isinstance(args[0], dict):
        length = args[0].get("length")
        if isinstance(length, (int, float)):
            return max(0, int(length))
    return default


def _bounds(args: tuple[Any, ...], low: int, high: int) -> tuple[int, int]:
    if args and isinstance(args[0], dict):
        low = int(args[0].get("min", low))
        high = int(args[0].get("max", high))
    elif len(args) >= 2:
        low, high = int(args[0]), int(args[1])
    elif len(args) == 1:
        high = int(args[0])
    return low, high


def _number_int(fake: Faker, *args: Any) -> int:
    low, high = _bounds(args, 0, 99999)
    return fake.random_int(min=low, max=high)


def _number_float(fake: Faker, *args: Any) -> float:
    low, high = _bounds(args, 0, 1000)
    return fake.pyfloat(min_value=low, max_value=high, right_digits=2)


def _string_alpha(fake: Faker, *args: Any) -> str:
    return fake.lexify("?" * _count(args, 8), letters=string.ascii_letters)


def _string_alphanumeric(fake: Faker, *args: Any) -> str:
    return fake.lexify("?" * _count(args, 10), letters=string.ascii_letters + string.digits)


def _string_numeric(fake: Faker, *args: Any) -> str:
    return fake.numerify("#" * _count(args, 5))


# category -> field -> callable(fake, *args)
_GENERATORS: dict[str, dict[str, Callable[..., Any]]] = {
    "person": {
        "fullName": lambda f: f.name(),
        "firstName": lambda f: f.first_name(),
        "lastName": lambda f: f.last_name(),
        "middleName": lambda f: f.first_name(),
        "jobTitle": lambda f: f.job(),
        "prefix": lambda f: f.prefix(),
        "suffix": lambda f: f.suffix(),
    },
    "internet": {
        "email": lambda f: f.email(),
        "userName": lambda f: f.user_name(),
        "username": lambda f: f.user_name(),
        "password": lambda f, *a: f.password(length=_count(a, 12)),
        "url": lambda f: f.url(),
        "domainName": lambda f: f.domain_name(),
        "ip": lambda f: f.ipv4(),
        "ipv4": lambda f: f.ipv4(),
    },
    "phone": {
        "number": lambda f: f.phone_number(),
    },
    "location": {
        "streetAddress": lambda f: f.street_address(),
        "city": lambda f: f.city(),
        "state": lambda f: f.state(),
        "country": lambda f: f.country(),
        "zipCode": lambda f: f.postcode(),
        "latitude": lambda f: f.latitude(),
        "longitude": lambda f: f.longitude(),
    },
    "company": {
        "name": lambda f: f.company(),
        "catchPhrase": lambda f: f.catch_phrase(),
    },
    "lorem": {
        "word": lambda f: f.word(),
        "words": lambda f, *a: " ".join(f.words(nb=_count(a, 3))),
        "sentence": lambda f: f.sentence(),
        "paragraph": lambda f: f.paragraph(),
        "text": lambda f: f.text(),
    },
    "number": {
        "int": _number_int,
        "float": _number_float,
    },
    "string": {
        "alpha": _string_alpha,
        "alphanumeric": _string_alphanumeric,
        "numeric": _string_numeric,
        "uuid": lambda f: f.uuid4(),
    },
    "datatype": {
        "boolean": lambda f: f.pybool(),
    },
    "date": {
        "recent": lambda f: f.date_time_between(start_date="-1d", end_date="now", tzinfo=timezone.utc).isoformat(),
        "past": lambda f: f.date_time_between(start_date="-1y", end_date="now", tzinfo=timezone.utc).isoformat(),
        "future": lambda f: f.date_time_between(start_date="now", end_date="+1y", tzinfo=timezone.utc).isoformat(),
        "birthdate": lambda f: f.date_of_birth().isoformat(),
    },
}


class GeneratorError(ValueError):
    """A synthetic-data expression could not be evaluated."""


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_args(body: str) -> tuple[Any, ...]:
    body = body.strip()
    if not body:
        return ()
    try:
        parsed = json.loads(f"[{body}]")
    except json.JSONDecodeError as exc:
        raise GeneratorError(f"Invalid arguments: {body}") from exc
    return tuple(parsed)


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


class VariableInterpolator:
    """Resolve `${...}` tokens against one interpolation context.

    A seeded interpolator produces the same synthetic values, in the same order,
    for the same sequence of expressions.
    """

    def __init__(self, context: InterpolationContext | None = None) -> None:
        self.context = context or InterpolationContext()
        self._faker: Faker | None = None

    @property
    def faker(self) -> Faker:
        if self._faker is None:
            fake = Faker()
            if self.context.seed is not None:
                fake.seed_instance(self.context.seed)
            self._faker = fake
        return self._faker

    def interpolate_string(self, template: str) -> str:
        if not isinstance(template, str) or "${" not in template:
            return template

        def _repl(match: re.Match[str]) -> str:
            return self.resolve(match.group(1).strip(), match.group(0))

        return _VAR_RE.sub(_repl, template)

    def interpolate_object(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.interpolate_string(value)
        if isinstance(value, dict):
            # Keys are left alone.
            return {k: self.interpolate_object(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.interpolate_object(v) for v in value]
        if isinstance(value, tuple):
            return tuple(self.interpolate_object(v) for v in value)
        return value

    def resolve(self, name: str, verbatim: str | None = None) -> str:
        """Value for one variable name, or `verbatim` (default `${name}`) when unknown."""
        fallback = verbatim if verbatim is not None else f"${{{name}}}"

        for prefix in GENERATOR_PREFIXES:
            if name.startswith(prefix):
                try:
                    return _stringify(self.generate(name[len(prefix) :]))
                except Exception as exc:
                    logger.warning("Failed to evaluate generator expression %r: %s", name, exc)
                    return fallback

        builtin = self._builtin(name)
        if builtin is not None:
            return builtin

        if name in self.context.custom_vars:
            return _stringify(self.context.custom_vars[name])

        logger.debug("Unresolved variable left verbatim: %s", name)
        return fallback

    def generate(self, expression: str) -> Any:
        """Evaluate `<category>.<field>` or `<category>.<method>(args)`."""
        category, sep, rest = expression.partition(".")
        if not sep or not rest:
            raise GeneratorError(f"Expected <category>.<field>, got {expression!r}")

        call = _CALL_RE.match(rest)
        if call:
            field_name, args = call.group(1), _parse_args(call.group(2) or "")
        else:
            field_name, args = rest, ()

        handler = _GENERATORS.get(category, {}).get(field_name)
        if handler is not None:
            return handler(self.faker, *args)

        provider = getattr(self.faker, _snake(field_name), None)
        if not callable(provider):
            raise GeneratorError(f"Unknown generator: {category}.{field_name}")
        if len(args) == 1 and isinstance(args[0], dict):
            return provider(**args[0])
        return provider(*args)

    def _builtin(self, name: str) -> str | None:
        if name == "timestamp":
            return str(int(time.time() * 1000))
        if name in {"datetime", "date", "time"}:
            now = datetime.now(timezone.utc)
            if name == "datetime":
                return now.strftime("%Y-%m-%d-%H-%M-%S")
            if name == "date":
                return now.strftime("%Y-%m-%d")
            return now.strftime("%H-%M-%S")
        if name == "random":
            return secrets.token_hex(3)
        if name == "uuid":
            return secrets.token_hex(4)
        if name == "baseUrl":
            return self.context.base_url or ""
        if name == "credentials.email":
            return self.context.email or ""
        if name == "credentials.password":
            return self.context.password or ""
        return None


def interpolate_string(template: str, context: InterpolationContext | None = None) -> str:
    return VariableInterpolator(context).interpolate_string(template)


def interpolate_object(value: Any, context: InterpolationContext | None = None) -> Any:
    return VariableInterpolator(context).interpolate_object(value)


def list_variables(text: str) -> list[str]:
    if not isinstance(text, str):
        return []
    return [m.group(1).strip() for m in _VAR_RE.finditer(text)]


def preview_interpolation(text: str, context: InterpolationContext | None = None) -> dict[str, Any]:
    return {
        "original": text,
        "interpolated": interpolate_string(text, context),
        "variables": list_variables(text),
    }


def generate_unique_id(prefix: str = "") -> str:
    stamp = f"{int(time.time() * 1000)}-{secrets.token_hex(2)}"
    return f"{prefix}-{stamp}" if prefix else stamp


def available_variables() -> dict[str, list[str]]:
    """Catalogue of documented variables grouped by category."""
    out: dict[str, list[str]] = {"builtin": list(BUILTIN_VARIABLES)}
    for category, fields in _GENERATORS.items():
        out[category] = [f"generator.{category}.{name}" for name in fields]
    return out


__all__ = [
    "BUILTIN_VARIABLES",
    "GeneratorError",
    "InterpolationContext",
    "VariableInterpolator",
    "available_variables",
    "generate_unique_id",
    "interpolate_object",
    "interpolate_string",
    "list_variables",
    "preview_interpolation",
]
