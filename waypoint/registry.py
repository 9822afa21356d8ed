"""Workflow definitions and the per-runtime registry."""

from __future__ import annotations

import inspect
import typing
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, create_model

from .errors import RegistrationError, WorkflowNotFoundError

WorkflowFn = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class WorkflowDefinition:
    """A registered workflow function with its typed signature.

    ``arguments_model`` validates and serializes invocation arguments (every
    parameter after the context); ``result_adapter`` does the same for the
    return value.
    """

    name: str
    fn: WorkflowFn
    signature: inspect.Signature
    arguments_model: type[BaseModel]
    result_adapter: TypeAdapter

    def bind_arguments(self, args: tuple, kwargs: dict) -> dict[str, Any]:
        """Validate call arguments and return their JSON payload."""
        bound = self.signature.bind(*args, **kwargs)
        model = self.arguments_model(**bound.arguments)
        return model.model_dump(mode="json")

    def load_arguments(self, payload: dict[str, Any]) -> dict[str, Any]:
        model = self.arguments_model.model_validate(payload)
        return {name: getattr(model, name) for name in self.signature.parameters}

    def dump_result(self, value: Any) -> Any:
        return self.result_adapter.dump_python(value, mode="json")

    def load_result(self, data: Any) -> Any:
        return self.result_adapter.validate_python(data)


def build_definition(fn: WorkflowFn, name: Optional[str] = None) -> WorkflowDefinition:
    """Inspect ``fn`` and build its definition.

    Raises:
        RegistrationError: If ``fn`` is not ``async def fn(ctx, ...)`` with
            named parameters only.
    """
    if not inspect.iscoroutinefunction(fn):
        raise RegistrationError(
            f"Workflow {getattr(fn, '__name__', fn)!r} must be an async function"
        )
    workflow_name = name or fn.__qualname__
    params = list(inspect.signature(fn).parameters.values())
    if not params or params[0].kind not in (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
    ):
        raise RegistrationError(
            f"Workflow {workflow_name!r} must accept a context as its first parameter"
        )

    hints = _type_hints(fn)
    fields: dict[str, Any] = {}
    arg_params = []
    for param in params[1:]:
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
        ):
            raise RegistrationError(
                f"Workflow {workflow_name!r} arguments must be named parameters, "
                f"got {param}"
            )
        annotation = hints.get(param.name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)
        arg_params.append(param)

    try:
        arguments_model = create_model(
            f"{fn.__name__}_arguments",
            __config__=ConfigDict(extra="forbid", protected_namespaces=()),
            **fields,
        )
        result_adapter = TypeAdapter(hints.get("return", Any))
    except Exception as exc:
        raise RegistrationError(
            f"Workflow {workflow_name!r} has unsupported annotations: {exc}"
        ) from exc

    return WorkflowDefinition(
        name=workflow_name,
        fn=fn,
        signature=inspect.Signature(arg_params),
        arguments_model=arguments_model,
        result_adapter=result_adapter,
    )


def _type_hints(fn: Callable) -> dict[str, Any]:
    try:
        return typing.get_type_hints(fn)
    except Exception:
        # unresolvable forward references fall back to Any
        return {
            key: value
            for key, value in getattr(fn, "__annotations__", {}).items()
            if not isinstance(value, str)
        }


class WorkflowRegistry:
    """Maps workflow names to definitions for one runtime."""

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def register(self, fn: WorkflowFn, name: Optional[str] = None) -> WorkflowDefinition:
        definition = build_definition(fn, name)
        existing = self._definitions.get(definition.name)
        if existing is not None and existing.fn is not fn:
            raise RegistrationError(
                f"A different workflow is already registered as {definition.name!r}"
            )
        self._definitions[definition.name] = definition
        return definition

    def get(self, name: str) -> WorkflowDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise WorkflowNotFoundError(f"Workflow {name!r} is not registered") from None

    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
