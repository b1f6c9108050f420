"""Rendering of ``nix-cache-info`` and ``.narinfo`` documents."""

from __future__ import annotations

from typing import Optional

from ..store.base import PathInfo, strip_trailing_slash
from ..store.hashing import HashEncoding


def render_cache_info(store_dir: str, priority: int = 30) -> str:
    return f"StoreDir: {store_dir}\nWantMassQuery: 1\nPriority: {priority}\n"


def nar_url(hash_part: str, info: PathInfo) -> str:
    nar_hash = info.nar_hash.to_string(HashEncoding.NIX32, include_type=False)
    return f"nar/{hash_part}-{nar_hash}.nar"


def render_narinfo(info: PathInfo, hash_part: str, signature: Optional[str] = None) -> str:
    """Render the narinfo text for ``info``.

    Field order is fixed; ``References``, ``Deriver`` and ``Sig`` are
    omitted rather than left empty.
    """
    nar_hash = info.nar_hash.to_string(HashEncoding.NIX32, include_type=False)
    lines = [
        f"StorePath: {strip_trailing_slash(info.path)}",
        f"URL: {nar_url(hash_part, info)}",
        "Compression: none",
        f"NarHash: {nar_hash}",
        f"NarSize: {info.nar_size}",
    ]
    if info.references:
        lines.append("References: " + " ".join(strip_trailing_slash(ref) for ref in info.references))
    if info.deriver:
        lines.append(f"Deriver: {strip_trailing_slash(info.deriver)}")
    if signature:
        lines.append(f"Sig: {signature}")
    return "\n".join(lines) + "\n"
