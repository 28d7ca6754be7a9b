"""Cache fingerprints and the install-with-cache flow.

A fingerprint is a plain, deterministic string built from every input
that changes what a layer contains. It is compared for equality with the
single value stored in the layer metadata by the previous build.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .layers import Layer, LayerFlags

if TYPE_CHECKING:
    from .lifecycle import BuildContext

logger = logging.getLogger(__name__)

FINGERPRINT_KEY = "version"


class CacheDecision(Enum):
    HIT = "hit"
    MISS = "miss"


def _render(value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def fingerprint(version: str, **inputs: object) -> str:
    """Build a fingerprint such as ``version:3.1.0,devMode:false``.

    Inputs render in the order they are passed.
    """
    parts = [f"version:{version}"]
    parts.extend(f"{key}:{_render(value)}" for key, value in inputs.items())
    return ",".join(parts)


def compute_cache_decision(persisted: Optional[str], current: str) -> CacheDecision:
    """HIT only when the persisted fingerprint equals ``current``."""
    if persisted is not None and persisted == current:
        return CacheDecision.HIT
    return CacheDecision.MISS


def install_with_cache(
    ctx: "BuildContext",
    name: str,
    flags: LayerFlags,
    current: str,
    install: Callable[[Layer], None],
) -> Layer:
    """
    Acquire a layer and (re)install it only when its fingerprint changed.

    On a hit the layer directory and metadata are left untouched. On a miss
    the layer and its record are cleared, ``install`` populates it
    (including its environment), and the new fingerprint is recorded last.
    Errors raised by ``install`` propagate unchanged and leave the layer
    without a fingerprint, so the next build misses.

    Args:
        ctx: Build context owning the layer
        name: Layer name
        flags: Layer flags
        current: Fingerprint of the inputs of this build
        install: Callback that fills the cleared layer

    Returns:
        The acquired layer
    """
    layer = ctx.layer(name, flags)
    persisted = ctx.get_metadata(layer, FINGERPRINT_KEY)

    if compute_cache_decision(persisted, current) is CacheDecision.HIT:
        ctx.cache_hit(name)
        return layer

    ctx.cache_miss(name)
    logger.debug(f"Layer {name!r} fingerprint changed: {persisted!r} -> {current!r}")
    ctx.clear_layer(layer)
    install(layer)
    ctx.set_metadata(layer, FINGERPRINT_KEY, current)
    return layer
