from __future__ import annotations

from dataclasses import MISSING, fields, is_dataclass
from types import NoneType, UnionType
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, Union

from typing_extensions import TypeAlias, get_args, get_origin, overload

from .errors import ConfigurationError

if TYPE_CHECKING:
    from _typeshed import DataclassInstance

    T_Data = TypeVar("T_Data", bound=DataclassInstance)


T = TypeVar("T")

Primitive: TypeAlias = (
    "str | float | int | bool | None | list[Primitive] | dict[str, Primitive]"
)


class TypeCastError(ConfigurationError):
    def __init__(self, key: str, message: str) -> None:
        self.key = key
        self.message = message
        super().__init__(f"Unable to parse config key {key!r}: {message}")


def _build_obj_key(key: str, next_key: str) -> str:
    return f"{key}{'.' if key else ''}{next_key}"


def _coerce_dataclass(typ: type[T_Data], val: Primitive, *, key: str) -> T_Data:
    val = _coerce_type(dict, val, key=key)
    all_fields = {f.name: f.type for f in fields(typ)}
    kwargs = {
        k: typecast(all_fields.get(k, Any), v, key=_build_obj_key(key, k))
        for k, v in val.items()
    }
    try:
        return typ(**kwargs)
    except TypeError:
        available_keys = {f.name for f in fields(typ)}
        required_keys = {
            f.name for f in fields(typ) if f.default is f.default_factory is MISSING
        }
        actual_keys = set(kwargs)

        missing = sorted(required_keys - actual_keys)
        unknown = sorted(actual_keys - available_keys)

        msg_parts = []
        if missing:
            msg_parts.append(f"missing keys: {missing}")
        if unknown:
            msg_parts.append(f"unknown keys: {unknown}")

        msg = ", ".join(msg_parts)
        if not msg:
            raise  # something else went wrong

        raise TypeCastError(key, msg) from None


def _coerce_number(typ: type[T], val: Primitive, *, key: str) -> T:
    # TOML booleans are ints to isinstance, and integers are valid floats
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        msg = f"Value was {type(val).__name__}, but expected {typ.__name__}"
        raise TypeCastError(key, msg)
    if typ is int and not isinstance(val, int):
        msg = f"Value was {type(val).__name__}, but expected int"
        raise TypeCastError(key, msg)
    return typ(val)  # type: ignore[call-arg]


@overload
def _coerce_type(typ: type[T], val: Primitive, *, key: str) -> T: ...
@overload
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any: ...
def _coerce_type(typ: type[Any], val: Primitive, *, key: str) -> Any:
    if typ is Any:
        return val

    if is_dataclass(typ):
        return _coerce_dataclass(typ, val, key=key)

    if typ in (int, float):
        return _coerce_number(typ, val, key=key)

    if not isinstance(val, typ):
        msg = f"Value was {type(val).__name__}, but expected {typ.__name__}"
        raise TypeCastError(key, msg)
    return val


def _coerce_dict(typ: type[dict[str, T]], val: Primitive, *, key: str) -> dict[str, T]:
    val = _coerce_type(dict, val, key=key)

    kt, vt = get_args(typ)
    assert kt is str, "non-string dict keys are not supported"
    return {k: typecast(vt, v, key=_build_obj_key(key, k)) for k, v in val.items()}


def _coerce_list(typ: type[list[T]], val: Primitive, *, key: str) -> list[T]:
    val = _coerce_type(list, val, key=key)
    (it,) = get_args(typ)
    return [typecast(it, item, key=f"{key}[{index}]") for index, item in enumerate(val)]


def _coerce_union(typ: type[T], val: Primitive, *, key: str) -> T:
    args = get_args(typ)
    if val is None and NoneType in args:
        return val  # type: ignore[return-value]

    errors = []
    for ut in args:
        if ut is NoneType:
            continue
        try:
            return typecast(ut, val, key=key)
        except TypeCastError as e:
            errors.append(f"- {e.message}")
    raise TypeCastError(key, "\nPossible issues:\n" + "\n".join(errors))


_origin_mapper = {
    dict: _coerce_dict,
    list: _coerce_list,
    Union: _coerce_union,
    UnionType: _coerce_union,
}


class Coercable(Protocol):
    def __call__(self, typ: Any, val: Primitive, *, key: str) -> Any: ...


@overload
def typecast(typ: type[T], val: Primitive, *, key: str = ...) -> T: ...
@overload
def typecast(typ: Any, val: Primitive, *, key: str = ...) -> Any: ...
def typecast(typ: Any, val: Primitive, *, key: str = "") -> Any:
    """Check and convert parsed TOML data into ``typ``.

    Dataclasses are built from tables, recursively; a mismatch anywhere
    raises :class:`TypeCastError` naming the dotted key that failed.
    """
    coerce: Coercable
    if typ is Any:
        return val
    if (origin := get_origin(typ)) in _origin_mapper:
        coerce = _origin_mapper[origin]
    elif isinstance(typ, type) and origin is None:
        coerce = _coerce_type
    else:
        raise NotImplementedError(f"{typ} is not supported yet")

    return coerce(typ, val, key=key)
