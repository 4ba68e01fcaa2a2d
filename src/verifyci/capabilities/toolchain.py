# capabilities/toolchain.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from ..errors import CapabilityError, StepFailure

if TYPE_CHECKING:
    from ..environment import Environment
    from ..model import CapabilityInvocation


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustc": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustfmt": "Run: rustup component add rustfmt",
    "cargo-clippy": "Run: rustup component add clippy",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# rustup component -> binary that proves it is installed
RUST_COMPONENT_TOOLS = {
    "rustfmt": "rustfmt",
    "clippy": "cargo-clippy",
}


def as_list(value: Any) -> List[str]:
    """Accept a list, or a comma/whitespace separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [p for p in str(value).replace(",", " ").split() if p]


def _tool_version(env: Environment, tool: str, step: CapabilityInvocation) -> str:
    result = env.run_process(f"{step.label}: {tool}", [tool, "--version"])
    if not result.ok:
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
        raise CapabilityError(f"{tool} is not available", step=step.label, hint=hint, tool=tool)
    first = result.output.strip().splitlines()
    return " ".join(first[0].split()) if first else "unknown"


def setup_toolchain(env: Environment, params: Dict[str, Any], step: CapabilityInvocation) -> str:
    """
    Install requested components and verify the toolchain.

    params:
      components: components to install (list or "a, b")
      install:    command template run once, `{components}` is substituted
      tools:      binaries that must answer `--version`
    The job's `requires` are verified as tools as well.
    """
    components = as_list(params.get("components"))
    install = params.get("install")
    lines: List[str] = []

    if install and components:
        cmd = str(install).format(components=" ".join(components))
        result = env.run_process(f"{step.label}: install", cmd, shell=True)
        if not result.ok:
            raise StepFailure(job=env.instance.name, step=step.label, cmd=cmd, exit_code=result.exit_code)
        lines.append(f"installed: {', '.join(components)}")

    tools = as_list(params.get("tools"))
    for tool in env.instance.job.requires:
        if tool not in tools:
            tools.append(tool)

    for tool in tools:
        lines.append(f"{tool}: {_tool_version(env, tool, step)}")
    return "\n".join(lines)


def setup_rust(env: Environment, params: Dict[str, Any], step: CapabilityInvocation) -> str:
    """Rust preset: rustup components plus cargo/rustc and the component binaries."""
    components = as_list(params.get("components"))
    version = params.get("rust-version") or params.get("toolchain")

    install = None
    if components:
        install = "rustup component add {components}"
        if version:
            install += f" --toolchain {version}"

    tools = ["cargo", "rustc"] + [RUST_COMPONENT_TOOLS.get(c, c) for c in components]
    return setup_toolchain(
        env,
        {"components": components, "install": params.get("install", install), "tools": tools},
        step,
    )
