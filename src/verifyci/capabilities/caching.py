# capabilities/caching.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from .. import settings
from ..cache import DEFAULT_DIGEST, CacheHit, hash_inputs
from ..errors import CacheError, CapabilityError
from .toolchain import as_list

if TYPE_CHECKING:
    from ..environment import Environment
    from ..model import CapabilityInvocation


RUST_CACHE_PATHS = ["target", "~/.cargo/registry/index", "~/.cargo/registry/cache", "~/.cargo/git/db"]
RUST_HASH_FILES = ["Cargo.lock", "**/Cargo.toml", "rust-toolchain.toml"]


def _save(env: Environment, namespace: str, digest: str, paths: List[str], keep: int, manifest: Dict) -> None:
    try:
        with env.exclusive_tree():
            key = env.cache.save(namespace, paths, digest, source=env.workdir, manifest=manifest)
        env.cache.prune(namespace, keep=keep)
    except CacheError as e:
        env.console.print_warning(f"[{env.instance.name}] cache not saved: {e.message}")
        return
    env.console.print_cache_saved(env.instance.name, key)


def cache(env: Environment, params: Dict[str, Any], step: CapabilityInvocation) -> str:
    """
    Restore `path` entries keyed by `key` (default: the instance cache key)
    and schedule a save for when the job succeeds.

    params:
      key:        namespace, e.g. "${{ runner.os }}" or "lint"
      path:       files/dirs to cache (workspace relative or "~/...")
      hash-files: inputs whose content selects the exact entry
      keep:       artifacts kept per namespace

    Cache problems degrade to a miss; they never fail the step. Restores
    and saves into a work directory shared by several instances take turns.
    """
    if env.cache is None:
        return "cache disabled"

    paths = as_list(params.get("path") or params.get("paths"))
    if not paths:
        raise CapabilityError("cache step needs at least one 'path'", step=step.label)

    namespace = str(params.get("key") or env.instance.cache_key)
    keep = int(params.get("keep", settings.CACHE_KEEP))

    try:
        digest, bits = hash_inputs(env.workdir, as_list(params.get("hash-files")))
    except OSError as e:
        env.console.print_warning(f"[{env.instance.name}] cache inputs not hashed: {e}")
        digest, bits = DEFAULT_DIGEST, {}

    with env.exclusive_tree():
        hit: CacheHit = env.cache.restore(namespace, digest, dest=env.workdir)
    if hit.hit:
        env.console.print_cache_hit(env.instance.name, hit.key)
    else:
        env.console.print_cache_miss(env.instance.name, hit.reason)

    if not hit.exact:
        manifest = {"job": env.instance.job.name, "instance": env.instance.name, "inputs": bits}
        env.add_post_hook(
            f"Post {step.label}",
            lambda e: _save(e, namespace, digest, paths, keep, manifest),
        )
    return f"{hit.reason}: {hit.key}"


def rust_cache(env: Environment, params: Dict[str, Any], step: CapabilityInvocation) -> str:
    """Rust preset: cache target/ and the cargo registry, keyed on Cargo manifests."""
    merged = {"path": RUST_CACHE_PATHS, "hash-files": RUST_HASH_FILES}
    merged.update(params)
    key = merged.get("key")
    merged["key"] = f"rust-{key}" if key else f"rust-{env.instance.cache_key}"
    return cache(env, merged, step)
