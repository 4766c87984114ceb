"""Schedule-time validation of dispatch targets.

A dispatch target is a method whose name and declaring class are all that
crosses the wire. It is accepted only when those two strings are enough to
find it again on the consumer side:

- the declaring class is not generic,
- the name is not overloaded within the class,
- the method is not a synthesized or anonymous construct,
- the method takes exactly one positional parameter (after ``self``/``cls``),
- the parameter annotation is a type the argument can be decoded into.
"""

from __future__ import annotations

import functools
import inspect
import sys
from dataclasses import dataclass
from typing import Any, Callable, get_origin, get_overloads, get_type_hints

from pydantic import PydanticSchemaGenerationError

from courier.core.codec.serde import argument_decoder
from courier.core.errors import ErrorCode, unsupported_target
from courier.core.logging import get_logger

logger = get_logger('targets')


@dataclass(frozen=True, slots=True)
class TargetDescriptor:
    """What the validator learned about an accepted target."""

    declaring_type: type
    method_name: str
    parameter_name: str
    parameter_type: Any
    is_static: bool

    @property
    def type_name(self) -> str:
        return qualified_type_name(self.declaring_type)


def qualified_type_name(cls: type) -> str:
    """Fully-qualified name used on the wire, e.g. ``app.services.Greeter``."""
    return f'{cls.__module__}.{cls.__qualname__}'


def is_generic_type(cls: Any) -> bool:
    """True for parameterized aliases and classes with unbound type parameters."""
    if get_origin(cls) is not None:
        return True
    if getattr(cls, '__parameters__', ()):
        return True
    # pydantic generic models and their concrete parametrizations
    generic_meta = getattr(cls, '__pydantic_generic_metadata__', None)
    if generic_meta and (generic_meta.get('parameters') or generic_meta.get('origin')):
        return True
    return False


def is_synthesized_name(name: str, qualname: str = '') -> bool:
    """Lambdas, nested functions/classes and dunders have no stable wire name."""
    if name.startswith('<') or '<locals>' in qualname or '<lambda>' in qualname:
        return True
    return name.startswith('__') and name.endswith('__')


def is_dispatchable_type(cls: Any) -> bool:
    """Registry-side mirror of the validator's class exclusions."""
    if not isinstance(cls, type):
        return False
    if is_generic_type(cls):
        return False
    return not is_synthesized_name(cls.__name__, cls.__qualname__)


def _owner_from_qualname(fn: Callable[..., Any]) -> type | None:
    """Find the class a plain function was defined in via its qualname."""
    owner_path, _, _ = fn.__qualname__.rpartition('.')
    if not owner_path:
        return None
    module = sys.modules.get(fn.__module__)
    obj: Any = module
    for part in owner_path.split('.'):
        obj = getattr(obj, part, None)
        if obj is None:
            return None
    return obj if isinstance(obj, type) else None


def _declaring_class(search_cls: type, name: str) -> type | None:
    for klass in search_cls.__mro__:
        if name in vars(klass):
            return klass
    return None


def _unwrap_descriptor(raw: Any) -> tuple[Callable[..., Any] | None, bool, bool]:
    """Return (function, is_static, drops_first_param) for a class attribute."""
    if isinstance(raw, staticmethod):
        return raw.__func__, True, False
    if isinstance(raw, classmethod):
        return raw.__func__, True, True
    if inspect.isfunction(raw):
        return raw, False, True
    return None, False, False


def _same_function(a: Any, b: Any) -> bool:
    return inspect.unwrap(a) is inspect.unwrap(b)


def _resolve_parameter_type(fn: Callable[..., Any], parameter: inspect.Parameter) -> Any:
    try:
        hints = get_type_hints(fn, include_extras=True)
    except Exception as exc:
        logger.warning(
            f'Could not resolve annotations of {fn.__qualname__} '
            f'({type(exc).__name__}: {exc}); its argument will be passed undecoded'
        )
        hints = {}
    if parameter.name in hints:
        return hints[parameter.name]
    if parameter.annotation is inspect.Parameter.empty or isinstance(parameter.annotation, str):
        return Any
    return parameter.annotation


def describe_method(declaring_type: type, name: str) -> TargetDescriptor:
    """
    Apply the shape rules to ``declaring_type.<name>``.

    Shared by the schedule-time validator and the consumer-side registry, so a
    method is dispatchable exactly when it could have been scheduled.

    Raises:
        UnsupportedTarget: If any rule is broken.
    """
    type_name = qualified_type_name(declaring_type)

    if is_generic_type(declaring_type):
        raise unsupported_target(
            f"'{type_name}' is generic",
            code=ErrorCode.TARGET_GENERIC_TYPE,
            notes=[
                f"method: '{name}'",
                'a concrete parametrization cannot be recovered from the type name alone',
            ],
            help_text='move the method to a non-generic class',
        )

    raw = vars(declaring_type).get(name)
    if isinstance(raw, functools.singledispatchmethod):
        raise unsupported_target(
            f"'{type_name}.{name}' dispatches on argument type",
            code=ErrorCode.TARGET_OVERLOADED,
            notes=['singledispatchmethod registers several implementations under one name'],
            help_text='expose each implementation under its own method name',
        )

    fn, is_static, drops_first = _unwrap_descriptor(raw)
    if fn is None:
        raise unsupported_target(
            f"'{type_name}.{name}' is not a method",
            code=ErrorCode.TARGET_NO_DECLARING_TYPE,
            notes=[f'attribute kind: {type(raw).__name__}'],
            help_text='use a plain, static or class method',
        )

    if get_overloads(fn):
        raise unsupported_target(
            f"'{type_name}.{name}' is overloaded",
            code=ErrorCode.TARGET_OVERLOADED,
            fn=fn,
            notes=[f'{len(get_overloads(fn))} @overload signatures share this name'],
            help_text='only the name crosses the wire; give each signature its own method',
        )

    if is_synthesized_name(name, fn.__qualname__):
        raise unsupported_target(
            f"'{type_name}.{name}' has no stable name",
            code=ErrorCode.TARGET_SYNTHESIZED,
            fn=fn,
            notes=['special (dunder), nested and anonymous functions cannot be routed by name'],
            help_text='use a regular named method',
        )

    parameters = list(inspect.signature(fn).parameters.values())
    if drops_first and parameters:
        parameters = parameters[1:]
    not_positional = [
        p for p in parameters
        if p.kind in (
            inspect.Parameter.VAR_POSITIONAL,
            inspect.Parameter.VAR_KEYWORD,
            inspect.Parameter.KEYWORD_ONLY,
        )
    ]
    if len(parameters) != 1 or not_positional:
        raise unsupported_target(
            f"'{type_name}.{name}' must take exactly one positional parameter",
            code=ErrorCode.TARGET_PARAMETER_COUNT,
            fn=fn,
            notes=[f'parameters: {[str(p) for p in parameters]}'],
            help_text='wrap the arguments into a single model or dataclass, passed positionally',
        )

    parameter = parameters[0]
    parameter_type = _resolve_parameter_type(fn, parameter)
    try:
        argument_decoder(parameter_type)
    except PydanticSchemaGenerationError as e:
        raise unsupported_target(
            f"'{type_name}.{name}' has a parameter type that cannot be decoded",
            code=ErrorCode.TARGET_UNSUPPORTED_PARAMETER_TYPE,
            fn=fn,
            notes=[f'parameter: {parameter}', str(e).splitlines()[0]],
            help_text='annotate the parameter with a pydantic model, a dataclass or a plain class',
        ) from e

    return TargetDescriptor(
        declaring_type=declaring_type,
        method_name=name,
        parameter_name=parameter.name,
        parameter_type=parameter_type,
        is_static=is_static,
    )


def validate_target(target: Callable[..., Any]) -> TargetDescriptor:
    """
    Accept or reject a candidate method before it is ever serialized.

    Accepts bound instance methods (``Greeter().greet``), methods read off the
    class (``Greeter.greet``), static methods and class methods.

    Raises:
        UnsupportedTarget: The target breaks a shape rule, or has no declaring class.
    """
    if isinstance(target, functools.partial):
        raise unsupported_target(
            'functools.partial objects have no stable name',
            code=ErrorCode.TARGET_SYNTHESIZED,
            notes=[f'wrapped: {target.func!r}'],
            help_text='schedule the underlying method and pass the bound values in the argument',
        )

    if inspect.ismethod(target):
        fn = target.__func__
        owner = target.__self__
        search_cls = owner if isinstance(owner, type) else type(owner)
    elif inspect.isfunction(target):
        fn = target
        if is_synthesized_name(fn.__name__, fn.__qualname__):
            raise unsupported_target(
                f"'{fn.__qualname__}' has no stable name",
                code=ErrorCode.TARGET_SYNTHESIZED,
                fn=fn,
                notes=['lambdas and nested functions cannot be resolved by name'],
                help_text='use a method defined at class level',
            )
        search_cls = _owner_from_qualname(fn)
        if search_cls is None:
            raise unsupported_target(
                f"'{fn.__qualname__}' is not defined on a class",
                code=ErrorCode.TARGET_NO_DECLARING_TYPE,
                fn=fn,
                notes=[f'module: {fn.__module__}'],
                help_text='define the target as a method (static or instance) of a class',
            )
    else:
        raise unsupported_target(
            f'{type(target).__name__} object is not a method',
            code=ErrorCode.TARGET_NO_DECLARING_TYPE,
            notes=[f'target: {target!r}'],
            help_text='pass a method such as Service.handle or Service().handle',
        )

    name = fn.__name__
    if is_synthesized_name(name, fn.__qualname__):
        raise unsupported_target(
            f"'{fn.__qualname__}' has no stable name",
            code=ErrorCode.TARGET_SYNTHESIZED,
            fn=fn,
            notes=['special (dunder), nested and anonymous functions cannot be routed by name'],
            help_text='use a regular named method',
        )

    declaring = _declaring_class(search_cls, name)
    if declaring is None:
        raise unsupported_target(
            f"'{name}' is not defined on '{qualified_type_name(search_cls)}'",
            code=ErrorCode.TARGET_NO_DECLARING_TYPE,
            fn=fn,
            notes=['methods attached to instances at runtime cannot be resolved by name'],
        )

    raw = vars(declaring).get(name)
    raw_fn, _, _ = _unwrap_descriptor(raw)
    if raw_fn is not None and not _same_function(raw_fn, fn):
        raise unsupported_target(
            f"'{qualified_type_name(declaring)}.{name}' resolves to a different function",
            code=ErrorCode.TARGET_NO_DECLARING_TYPE,
            fn=fn,
            notes=[f'scheduled: {fn.__qualname__}', f'found: {raw_fn.__qualname__}'],
            help_text='schedule the method under the name it is defined with',
        )

    descriptor = describe_method(declaring, name)
    logger.debug(f'Accepted dispatch target {descriptor.type_name}.{name}')
    return descriptor
