"""Override-chain method dispatch.

Every module extending a model may contribute an implementation of a method.
The implementations of one (model, method) pair form a chain: calling the
method runs the most recently registered implementation, which can forward
to the next one with ``rs.super().<method>(...)``. The chain ends with a base
implementation that does not forward.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from typed_models.errors import UnknownMethod

if TYPE_CHECKING:
    from typed_models.models import Model


@dataclass(frozen=True)
class MethodLayer:
    """One implementation in a chain, linked to the implementation it overrides."""

    method_name: str
    func: Callable[..., Any]
    module: str
    next: MethodLayer | None = None


class Method:
    """The override chain of one method on one model.

    Implementations are registered bottom-up while the registry is open;
    ``finalize`` links them once, after which the chain never changes.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: list[tuple[Callable[..., Any], str]] = []
        self.top: MethodLayer | None = None

    def add(self, func: Callable[..., Any], module: str) -> None:
        """Register an implementation above the ones already registered."""
        if self.top is not None:
            raise RuntimeError(f"Method '{self.name}' is already finalized")
        self._pending.append((func, module))

    def stack(self, other: Method) -> None:
        """Put the implementations of ``other`` above this chain's own."""
        self._pending.extend(other._pending)

    def finalize(self) -> None:
        layer: MethodLayer | None = None
        for func, module in self._pending:
            layer = MethodLayer(self.name, func, module, next=layer)
        self.top = layer

    @property
    def layers(self) -> list[MethodLayer]:
        """Implementations in dispatch order (topmost first)."""
        result = []
        layer = self.top
        while layer is not None:
            result.append(layer)
            layer = layer.next
        return result

    def __repr__(self) -> str:
        return f"Method({self.name!r}, {len(self._pending)} layers)"


class _Super:
    """Forwards a call to the next implementation of the current method."""

    def __init__(self, receiver: MethodCaller, layer: MethodLayer) -> None:
        self._receiver = receiver
        self._layer = layer

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name != self._layer.method_name:
            raise AttributeError(
                f"super() inside '{self._layer.method_name}' cannot forward to '{name}'"
            )
        next_layer = self._layer.next
        if next_layer is None:
            raise UnknownMethod(
                self._receiver.model.name, name, "no implementation to forward to"
            )

        def forward(*args: Any, **kwargs: Any) -> Any:
            return self._receiver._invoke(next_layer, *args, **kwargs)

        return forward


class MethodCaller:
    """Mixin giving a receiver (record collection or snapshot) method dispatch.

    Subclasses provide ``model`` and ``_with_layer``.
    """

    model: Model
    _layer: MethodLayer | None = None

    def _with_layer(self, layer: MethodLayer) -> MethodCaller:
        raise NotImplementedError

    def _invoke(self, layer: MethodLayer, *args: Any, **kwargs: Any) -> Any:
        return layer.func(self._with_layer(layer), *args, **kwargs)

    def call(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """Run the topmost implementation of a method."""
        method = self.model.get_method(method_name)
        if method is None or method.top is None:
            raise UnknownMethod(self.model.name, method_name)
        return self._invoke(method.top, *args, **kwargs)

    def super(self) -> _Super:
        """Access the next implementation of the method currently running."""
        if self._layer is None:
            raise RuntimeError("super() is only available inside a model method")
        return _Super(self, self._layer)

    def __getattr__(self, name: str) -> Callable[..., Any]:
        model = self.__dict__.get("model")
        if name.startswith("_") or model is None:
            raise AttributeError(name)
        method = model.get_method(name)
        if method is None or method.top is None:
            raise UnknownMethod(self.model.name, name)
        top = method.top

        def bound(*args: Any, **kwargs: Any) -> Any:
            return self._invoke(top, *args, **kwargs)

        bound.__name__ = name
        return bound
