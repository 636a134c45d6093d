from bridgekeeper.core.errors import UnsupportedRoute
from bridgekeeper.routes.base import AbstractBurnRoute
from bridgekeeper.routes.token_messenger import TokenMessengerRoute
from bridgekeeper.routes.wrapper_bridge import WrapperBridgeRoute

ROUTES = {
    TokenMessengerRoute.name: TokenMessengerRoute,
    WrapperBridgeRoute.name: WrapperBridgeRoute,
}


def get_route(name: str) -> AbstractBurnRoute:
    try:
        return ROUTES[name]()
    except KeyError:
        raise UnsupportedRoute(f"Unknown burn route '{name}'. Known routes: {sorted(ROUTES)}") from None


__all__ = ["AbstractBurnRoute", "TokenMessengerRoute", "WrapperBridgeRoute", "ROUTES", "get_route"]
