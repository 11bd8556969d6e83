"""nodnod injection for experiment-aware routes."""

from __future__ import annotations

import functools
import inspect
import typing

import kungfu
from nodnod import EventLoopAgent, Node, Scope, Value
from starlette.requests import Request

from fastapi_xpr.codec import UserState

F = typing.TypeVar("F", bound=typing.Callable[..., typing.Any])
NodeParams = dict[str, "type[Node[typing.Any, typing.Any]]"]


def _is_node(ann: typing.Any) -> bool:
    try:
        return isinstance(ann, type) and issubclass(ann, Node)
    except TypeError:
        return False


def _node_params(fn: typing.Callable[..., typing.Any]) -> NodeParams:
    hints = typing.get_type_hints(fn)
    params: NodeParams = {}
    for name, param in inspect.signature(fn).parameters.items():
        ann = hints.get(name, param.annotation)
        if _is_node(ann):
            params[name] = ann
    return params


def _request_signature(fn: typing.Callable[..., typing.Any], nodes: NodeParams) -> inspect.Signature:
    sig = inspect.signature(fn)
    kept = [p for name, p in sig.parameters.items() if name not in nodes and name != "request"]
    kept.append(inspect.Parameter("request", inspect.Parameter.KEYWORD_ONLY, annotation=Request))
    return sig.replace(parameters=kept)


def _current_user(request: Request) -> UserState:
    if not hasattr(request.state, "feature"):
        raise RuntimeError("experiment routes need XprMiddleware installed on the app")
    return getattr(request.state, "xpr_user", None) or UserState.anonymous()


class _Injector:
    def __init__(self, nodes: NodeParams, parent: Scope | None) -> None:
        self.nodes = nodes
        self.parent = parent
        self.agent = EventLoopAgent.build(set(nodes.values()))

    def _scope(self, request: Request) -> Scope:
        detail = f"xpr:{id(request)}"
        if self.parent is None:
            return Scope(detail=detail)
        return self.parent.create_child(detail=detail)

    async def __call__(
        self,
        request: Request,
        handler: typing.Callable[..., typing.Any],
        kwargs: dict[str, typing.Any],
    ) -> typing.Any:
        user = _current_user(request)
        scope = self._scope(request)
        async with scope:
            scope.push(Value(Request, request))
            scope.push(Value(UserState, user))

            run: typing.Callable[..., typing.Awaitable[None]] = getattr(self.agent, "run")
            await run(local_scope=scope, mapped_scopes={})

            values = dict(kwargs)
            for name, node in self.nodes.items():
                match scope.retrieve(getattr(node, "__type__", node)):
                    case kungfu.Some(value):
                        values[name] = value.unbox()
                    case kungfu.Nothing():
                        pass

            result = handler(**values)
            if inspect.iscoroutine(result):
                return await result
            return result


@typing.overload
def experiment_route(func: F) -> F: ...


@typing.overload
def experiment_route(func: None = None, *, scope: Scope | None = None) -> typing.Callable[[F], F]: ...


def experiment_route(
    func: F | None = None,
    *,
    scope: Scope | None = None,
) -> F | typing.Callable[[F], F]:
    """
    Inject `Features` (and other nodes) into a route.

    Nodes can compose from the `Request` and the request's `UserState`.

    @app.get("/")
    @experiment_route
    async def handler(feature: Features): ...

    @app.get("/")
    @experiment_route(scope=xpr.scope)
    async def handler(app_feature: AppFeatures): ...
    """

    def decorator(fn: F) -> F:
        nodes = _node_params(fn)
        if not nodes:
            return fn

        inject = _Injector(nodes, scope)
        wants_request = "request" in inspect.signature(fn).parameters

        @functools.wraps(fn)
        async def wrapper(request: Request, **kwargs: typing.Any) -> typing.Any:
            if wants_request:
                kwargs["request"] = request
            return await inject(request, fn, kwargs)

        setattr(wrapper, "__signature__", _request_signature(fn, nodes))
        return typing.cast(F, wrapper)

    if func is not None:
        return decorator(func)
    return decorator


__all__ = ("experiment_route",)
