# chitfund/api/__init__.py
import importlib
import logging
import pkgutil
from typing import List

from fastapi import APIRouter

log = logging.getLogger("chitfund.api")


def route_modules() -> List[str]:
    """Names of the *_routes modules shipped in this package, in mount order."""
    return sorted(
        name for _, name, _ in pkgutil.iter_modules(__path__) if name.endswith("_routes")
    )


def build_api_router() -> APIRouter:
    """
    One router carrying every *_routes module's endpoints.
    A routes module without a `router` is a packaging error and fails startup.
    """
    api = APIRouter()
    for name in route_modules():
        module = importlib.import_module(f"{__name__}.{name}")
        area_router = getattr(module, "router", None)
        if area_router is None:
            raise RuntimeError(f"{__name__}.{name} does not define `router`")
        api.include_router(area_router)
        log.info("Mounted %s (%d endpoints)", name, len(area_router.routes))
    return api
