"""
Named capabilities that `uses` steps can invoke.

A capability is a callable `(environment, params, step) -> output | None`
that raises CapabilityError / StepFailure / CacheError on failure.
"""
from __future__ import annotations

from typing import Dict

from .caching import cache, rust_cache
from .checkout import checkout
from .toolchain import setup_rust, setup_toolchain


def default_capabilities() -> Dict[str, object]:
    """
    Built-in capabilities, plus aliases for the hosted actions they stand in
    for, so workflows written against those names run locally unchanged.
    """
    return {
        "checkout": checkout,
        "setup-toolchain": setup_toolchain,
        "setup-rust": setup_rust,
        "cache": cache,
        "rust-cache": rust_cache,
        # aliases
        "actions/checkout": checkout,
        "hecrj/setup-rust-action": setup_rust,
        "dtolnay/rust-toolchain": setup_rust,
        "Swatinem/rust-cache": rust_cache,
        "actions/cache": cache,
    }


__all__ = ["default_capabilities", "cache", "rust_cache", "checkout", "setup_rust", "setup_toolchain"]
