# courier/core/registry/types.py
from __future__ import annotations
import functools
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Dict, Iterator, Mapping

from courier.core.codec.serde import argument_decoder
from courier.core.errors import (
    ErrorCode,
    RegistryError,
    UnknownMethod,
    UnknownType,
    UnsupportedTarget,
)
from courier.core.logging import get_logger
from courier.core.targets import (
    TargetDescriptor,
    describe_method,
    is_dispatchable_type,
    qualified_type_name,
)
from courier.core.utils.imports import import_by_path

logger = get_logger('registry')

# Optional zero-argument factory a class can expose instead of its constructor.
FACTORY_ATTR = '__courier_factory__'


def normalize_type_name(type_name: str) -> str:
    """Registry key for a type name (case-insensitive)."""
    return type_name.casefold()


@dataclass(frozen=True, slots=True)
class MethodHandle:
    """A dispatchable method, described once at registration time."""

    descriptor: TargetDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.method_name

    @property
    def is_static(self) -> bool:
        return self.descriptor.is_static

    @property
    def parameter_name(self) -> str:
        return self.descriptor.parameter_name

    @property
    def parameter_type(self) -> Any:
        return self.descriptor.parameter_type

    def decode(self, value: Any) -> Any:
        """Turn the envelope value into the declared parameter type."""
        return argument_decoder(self.descriptor.parameter_type)(value)

    def bind(self, owner: Any) -> Callable[[Any], Any]:
        """Return the callable for `owner` (the class for static methods, else an instance)."""
        return getattr(owner, self.descriptor.method_name)


@dataclass(frozen=True, slots=True)
class TypeHandle:
    """Everything the dispatcher needs to know about one registered class."""

    type_name: str
    cls: type
    factory: Callable[[], Any]
    methods: Mapping[str, MethodHandle]

    def method(self, name: str) -> MethodHandle:
        try:
            return self.methods[name]
        except KeyError:
            raise UnknownMethod(self.type_name, name) from None

    def create_instance(self) -> Any:
        return self.factory()


def _default_factory(cls: type) -> Callable[[], Any]:
    custom = getattr(cls, FACTORY_ATTR, None)
    if callable(custom):
        return custom
    return cls


def _is_method_attribute(raw: Any) -> bool:
    return isinstance(
        raw, (staticmethod, classmethod, functools.singledispatchmethod)
    ) or (callable(raw) and hasattr(raw, '__code__'))


def _describe_methods(cls: type) -> Dict[str, MethodHandle]:
    """Collect every method of `cls` (inherited ones included) that passes the target rules."""
    methods: Dict[str, MethodHandle] = {}
    # Base classes first so overrides replace inherited entries
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        for name, raw in vars(klass).items():
            if name.startswith('__') or not _is_method_attribute(raw):
                continue
            try:
                methods[name] = MethodHandle(describe_method(klass, name))
            except UnsupportedTarget as exc:
                methods.pop(name, None)
                logger.debug(
                    f'Skipping {qualified_type_name(klass)}.{name}: {exc.message}'
                )
    return methods


def build_type_handle(
    cls: type, factory: Callable[[], Any] | None = None
) -> TypeHandle:
    """Describe `cls` for dispatch: name, zero-argument factory and method table."""
    return TypeHandle(
        type_name=qualified_type_name(cls),
        cls=cls,
        factory=factory or _default_factory(cls),
        methods=MappingProxyType(_describe_methods(cls)),
    )


def _nested_types(cls: type) -> Iterator[type]:
    prefix = f'{cls.__qualname__}.'
    for name, attr in vars(cls).items():
        if name.startswith('_') or not isinstance(attr, type):
            continue
        if attr.__module__ == cls.__module__ and attr.__qualname__.startswith(prefix):
            yield attr
            yield from _nested_types(attr)


def module_types(module: ModuleType) -> Iterator[type]:
    """Public classes defined in `module`, nested public classes included."""
    exported = getattr(module, '__all__', None)
    if exported is not None:
        names = list(exported)
    else:
        names = [name for name in vars(module) if not name.startswith('_')]
    for name in names:
        obj = getattr(module, name, None)
        if isinstance(obj, type) and obj.__module__ == module.__name__:
            yield obj
            yield from _nested_types(obj)


class TypeRegistry(Mapping[str, TypeHandle]):
    """Registry mapping type name -> TypeHandle, case-insensitively.

    Populate it at startup with register(); lookups never lock. Writers are
    serialized and swap in a fresh dict, so a resolve() running concurrently
    with a register() sees either the old or the new table, never a partial one.
    Registration is additive and last-write-wins; there is no removal.
    """

    def __init__(self) -> None:
        self._types: Dict[str, TypeHandle] = {}
        self._write_lock = threading.Lock()

    def __getitem__(self, key: str) -> TypeHandle:
        try:
            return self._types[normalize_type_name(key)]
        except KeyError:
            raise UnknownType(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def resolve(self, type_name: str) -> TypeHandle:
        """Look up a type by its fully-qualified name.

        Raises:
            UnknownType: If no registered type has that name.
        """
        return self[type_name]

    def type_names(self) -> list[str]:
        """Registered names as they were declared (not normalized)."""
        return [handle.type_name for handle in self._types.values()]

    def _store(self, handles: Iterable[TypeHandle]) -> list[TypeHandle]:
        stored = list(handles)
        with self._write_lock:
            updated = dict(self._types)
            for handle in stored:
                key = normalize_type_name(handle.type_name)
                if key in updated and updated[key].cls is not handle.cls:
                    logger.debug(f'Replacing registered type {handle.type_name}')
                updated[key] = handle
            self._types = updated
        return stored

    # --- registration ---
    def register_type(
        self, cls: type, *, factory: Callable[[], Any] | None = None
    ) -> TypeHandle:
        """Register a single class, optionally with a custom zero-argument factory.

        Raises:
            RegistryError: If the class is generic or synthesized.
        """
        if not is_dispatchable_type(cls):
            raise RegistryError(
                message=f'{cls!r} cannot be registered for dispatch',
                code=ErrorCode.REGISTRY_INVALID_SOURCE,
                notes=['generic, local and anonymous classes are not dispatchable'],
                help_text='register a concrete module-level class',
            )
        (handle,) = self._store([build_type_handle(cls, factory)])
        logger.debug(
            f'Registered {handle.type_name} ({len(handle.methods)} dispatchable methods)'
        )
        return handle

    def register_module(self, module: ModuleType) -> list[TypeHandle]:
        """Register every dispatchable public class of a module."""
        handles = self._store(
            build_type_handle(cls) for cls in module_types(module) if is_dispatchable_type(cls)
        )
        logger.info(f'Registered {len(handles)} types from module {module.__name__}')
        return handles

    def register(self, *sources: Any) -> list[TypeHandle]:
        """
        Register modules or sets of classes as dispatch targets.

        Each source may be a module, a module locator string (dotted path or
        file path), a class, or an iterable of classes. Generic and synthesized
        classes found in modules or iterables are skipped.

        Returns:
            The handles stored by this call, in registration order.

        Raises:
            RegistryError: If a source is none of the accepted kinds.
        """
        stored: list[TypeHandle] = []
        for source in sources:
            if isinstance(source, ModuleType):
                stored.extend(self.register_module(source))
            elif isinstance(source, str):
                stored.extend(self.register_module(import_by_path(source)))
            elif isinstance(source, type):
                stored.append(self.register_type(source))
            elif isinstance(source, Iterable):
                classes = list(source)
                invalid = [item for item in classes if not isinstance(item, type)]
                if invalid:
                    raise _invalid_source(invalid[0])
                handles = self._store(
                    build_type_handle(cls) for cls in classes if is_dispatchable_type(cls)
                )
                logger.info(f'Registered {len(handles)} types from a set of {len(classes)}')
                stored.extend(handles)
            else:
                raise _invalid_source(source)
        return stored


def _invalid_source(source: Any) -> RegistryError:
    return RegistryError(
        message=f'cannot register {type(source).__name__} object',
        code=ErrorCode.REGISTRY_INVALID_SOURCE,
        notes=[f'got: {source!r}'],
        help_text='pass a module, a module path string, a class, or an iterable of classes',
    )
