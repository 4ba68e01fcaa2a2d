# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import re
import shutil
import tarfile
import tempfile
import time
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import CacheError

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# A cache entry is addressed by (namespace, digest):
#   namespace = the rendered `key` of a cache step (e.g. "Linux", "lint")
#   digest    = hash of the declared input files, or "default"
#
# Layout:
#   root/
#     <namespace>/
#       <digest>.tar.gz
#       <digest>.manifest.json
#
# Restore tries the exact digest first, then the newest artifact in the
# namespace. An artifact is unpacked into a staging directory and only
# copied into place once fully read. Writes go to a private temp file and
# are published with os.replace, so racing writers of one key resolve as
# last write wins and readers only ever see complete artifacts.
# ---------------------------------------------------------------------


DEFAULT_DIGEST = "default"
DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".verifyci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]

# tar arcname prefixes: paths inside the workspace vs. under the user's home
_WS = "ws"
_HOME = "home"


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict = field(default_factory=dict)
    exact: bool = False


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sanitize_namespace(key: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", key.strip())
    return cleaned.strip("._") or "default"


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(repo_root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand input patterns into concrete paths.
    Supports:
      - file path: "Cargo.lock"
      - dir path:  "src/"
      - glob:      "**/Cargo.toml"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = repo_root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(repo_root.glob(pat)) if m.exists())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def hash_inputs(repo_root: str | Path, inputs: List[str], *, excludes: Optional[List[str]] = None) -> Tuple[str, Dict]:
    """
    Hash the declared input set deterministically (relative path + content digest).
    Returns (digest, manifest_bits). No inputs hash to DEFAULT_DIGEST.
    """
    if not inputs:
        return DEFAULT_DIGEST, {"files": []}

    root = Path(repo_root).resolve()
    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])
    fps: List[Tuple[str, str]] = []
    for p in _resolve_globs(root, inputs):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            rel = _relpath(f, root)
            if _matches_any_glob(rel, exclude_globs):
                continue
            fps.append((rel, _hash_file_contents(f)))

    fps.sort(key=lambda t: t[0])
    payload = {"files": fps}
    return _sha256_str(_json_dumps_stable(payload))[:32], payload


def _arc_location(entry: str, root: Path) -> Tuple[Path, str, Path]:
    """Return (source path, arc prefix, base dir) for a cache path entry."""
    if entry.startswith("~"):
        home = Path.home()
        return Path(entry).expanduser(), _HOME, home
    return (root / entry), _WS, root


def _tar_add_path(tar: tarfile.TarFile, src: Path, prefix: str, base: Path, exclude_globs: List[str]) -> int:
    """Add src (file/dir) into tar under prefix/, skipping excluded paths."""
    if not src.exists():
        return 0
    files = [src] if src.is_file() else list(_iter_files_under(src))
    added = 0
    for f in files:
        rel = _relpath(f, base)
        if _matches_any_glob(rel, exclude_globs):
            continue
        tar.add(str(f), arcname=f"{prefix}/{rel}", recursive=False)
        added += 1
    return added


def _publish(staged: Path, base: Path) -> None:
    """Copy every staged file to the same relative path under base."""
    if not staged.is_dir():
        return
    for f in _iter_files_under(staged):
        dst = base / f.relative_to(staged)
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(f, dst)


def _write_atomic(target: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class CacheStore:
    """
    File-based cache store shared by every job instance of a run.
    Reads are always safe; writes are atomic per artifact.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _namespace_dir(self, namespace: str, create: bool = False) -> Path:
        d = self.root / sanitize_namespace(namespace)
        if create:
            d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, namespace: str, digest: str = DEFAULT_DIGEST) -> Path:
        return self._namespace_dir(namespace) / f"{digest}.tar.gz"

    def manifest_path(self, namespace: str, digest: str = DEFAULT_DIGEST) -> Path:
        return self._namespace_dir(namespace) / f"{digest}.manifest.json"

    def _candidates(self, namespace: str, digest: str) -> List[Tuple[Path, bool]]:
        exact = self.artifact_path(namespace, digest)
        out: List[Tuple[Path, bool]] = []
        if exact.exists():
            out.append((exact, True))
        d = self._namespace_dir(namespace)
        if d.is_dir():
            others = sorted(
                (p for p in d.glob("*.tar.gz") if p != exact),
                key=lambda p: p.stat().st_mtime,
                reverse=True,
            )
            out.extend((p, False) for p in others)
        return out

    def restore(self, namespace: str, digest: str = DEFAULT_DIGEST, *, dest: str | Path = ".") -> CacheHit:
        """
        Restore a cached artifact into `dest` (workspace paths) and the home
        directory (`~` paths). A broken artifact is treated as a miss.
        """
        key = f"{sanitize_namespace(namespace)}/{digest}"
        root = Path(dest).resolve()
        try:
            candidates = self._candidates(namespace, digest)
        except OSError as e:
            return CacheHit(hit=False, key=key, reason=f"cache unavailable: {e}")
        if not candidates:
            return CacheHit(hit=False, key=key, reason="cache miss")

        last_error = ""
        for art, exact in candidates:
            try:
                self._extract(art, root)
            except (OSError, EOFError, zlib.error, tarfile.TarError, CacheError) as e:
                last_error = f"{art.name}: {e}"
                continue

            found = f"{sanitize_namespace(namespace)}/{art.name[: -len('.tar.gz')]}"
            try:
                stored = json.loads(art.with_name(art.name.replace(".tar.gz", ".manifest.json")).read_text(encoding="utf-8"))
            except (OSError, ValueError):
                stored = {}
            reason = "cache hit" if exact else "cache hit (partial key match)"
            return CacheHit(hit=True, key=found, reason=reason, manifest=stored, exact=exact)

        return CacheHit(hit=False, key=key, reason=f"cache exists but restore failed: {last_error}")

    def _extract(self, art: Path, root: Path) -> None:
        """
        Unpack into a staging directory first; files reach `root` and the
        home directory only once the whole archive has been read.
        """
        with tempfile.TemporaryDirectory(dir=str(self.root), prefix=".restore-") as tmp:
            staging = Path(tmp)
            with tarfile.open(str(art), mode="r:gz") as tar:
                for m in tar.getmembers():
                    prefix = m.name.partition("/")[0]
                    if prefix not in (_WS, _HOME):
                        raise CacheError(f"unexpected entry in cache artifact: {m.name}")
                tar.extractall(path=str(staging), filter="data")
            _publish(staging / _WS, root)
            _publish(staging / _HOME, Path.home())

    def save(
        self,
        namespace: str,
        paths: List[str],
        digest: str = DEFAULT_DIGEST,
        *,
        source: str | Path = ".",
        manifest: Optional[Dict] = None,
        excludes: Optional[List[str]] = None,
    ) -> str:
        """
        Save `paths` (relative to `source`, or `~`-prefixed) as the artifact
        for (namespace, digest). Returns the stored key.

        Raises:
            CacheError: nothing to store, or the store is not writable
        """
        root = Path(source).resolve()
        exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])
        key = f"{sanitize_namespace(namespace)}/{digest}"

        buf = io.BytesIO()
        added = 0
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for entry in paths:
                src, prefix, base = _arc_location(entry, root)
                try:
                    added += _tar_add_path(tar, src.resolve(), prefix, base.resolve(), exclude_globs)
                except ValueError as e:
                    raise CacheError(f"cache path escapes its base directory: {entry}", key=key) from e
        if added == 0:
            raise CacheError("no files to cache", key=key, paths=paths)

        meta = dict(manifest or {})
        meta.update({"key": key, "paths": list(paths), "files": added, "saved_at_unix": int(time.time())})

        try:
            self._namespace_dir(namespace, create=True)
            _write_atomic(self.artifact_path(namespace, digest), buf.getvalue())
            _write_atomic(
                self.manifest_path(namespace, digest),
                json.dumps(meta, sort_keys=True, indent=2, ensure_ascii=False).encode("utf-8"),
            )
        except OSError as e:
            raise CacheError(f"could not write cache artifact: {e}", key=key) from e
        return key

    def prune(self, namespace: str, keep: int = 3) -> List[str]:
        """
        Keep only the newest N artifacts for a namespace.
        Uses file mtime as "newest". Returns the removed digests.
        """
        d = self._namespace_dir(namespace)
        if not d.is_dir():
            return []
        tars = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = []
        for p in tars[keep:]:
            digest = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{digest}.manifest.json").unlink(missing_ok=True)
            removed.append(digest)
        return removed
