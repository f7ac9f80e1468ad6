# src/simgen_core/toolchain/runtime_cache.py
"""
Decides whether the precompiled runtime objects are current.

The runtime is compiled once per numeric type into object files beside its
sources. Next to them lives a stamp file holding a SHA-256 digest of every
runtime source plus the compile command line. The objects are rebuilt only
when that digest changes or an object is missing.

The cache manages two scopes:

- 'disk':   the stamp files, which persist across processes.
- 'memory': an instance-level record of (runtime_dir, T, digest) triples already
            verified by this cache object, so a process that compiles many
            models hashes the runtime sources only once per cache instance.
"""
import hashlib
import logging
from pathlib import Path
from typing import Dict, Iterable, Sequence, Tuple

logger = logging.getLogger(__name__)

RUNTIME_SUFFIXES = (".cc", ".h", ".tcc")


class RuntimeCache:
    """
    An explicit, caller-owned record of which runtime builds are up to date.

    Pass one instance through `CompileConfig.runtime_cache` to share it between
    jobs. A job without a cache creates a fresh one, which still honors the
    stamp files on disk.
    """

    def __init__(self):
        self._verified: Dict[Tuple[str, str], str] = {}
        self._stats = {'hits': 0, 'misses': 0}
        logger.debug("RuntimeCache instance created.")

    # --- Digest ---

    @staticmethod
    def digest(runtime_dir: Path, flags: Sequence[str]) -> str:
        """SHA-256 over the runtime sources (name and content, sorted by name) and the flags."""
        h = hashlib.sha256()
        for path in sorted(runtime_dir.iterdir()):
            if path.suffix not in RUNTIME_SUFFIXES or not path.is_file():
                continue
            h.update(path.name.encode("utf-8"))
            h.update(b"\0")
            h.update(path.read_bytes())
            h.update(b"\0")
        h.update(" ".join(flags).encode("utf-8"))
        return h.hexdigest()

    @staticmethod
    def stamp_path(runtime_dir: Path, T: str) -> Path:
        return runtime_dir / f"runtime_{T}.stamp"

    # --- Queries ---

    def is_current(self, runtime_dir: Path, T: str, flags: Sequence[str], objects: Iterable[Path]) -> bool:
        """
        True when every object exists and the stamp matches the present sources
        and flags. A False result means the caller must rebuild and then `record`.
        """
        objects = list(objects)
        key = (str(runtime_dir.resolve()), T)
        if not all(o.exists() for o in objects):
            self._stats['misses'] += 1
            logger.debug(f"Runtime objects for '{T}' missing in {runtime_dir}.")
            return False

        if key in self._verified:
            self._stats['hits'] += 1
            logger.debug(f"Runtime for '{T}' already verified in memory.")
            return True

        current = self.digest(runtime_dir, flags)
        stamp = self.stamp_path(runtime_dir, T)
        recorded = stamp.read_text(encoding="utf-8").strip() if stamp.exists() else None
        if recorded != current:
            self._stats['misses'] += 1
            logger.info(f"Runtime sources or flags changed for '{T}'. Objects will be rebuilt.")
            return False

        self._verified[key] = current
        self._stats['hits'] += 1
        return True

    def record(self, runtime_dir: Path, T: str, flags: Sequence[str]) -> None:
        """Writes the stamp after a successful build and remembers it in memory."""
        current = self.digest(runtime_dir, flags)
        self.stamp_path(runtime_dir, T).write_text(current + "\n", encoding="utf-8")
        self._verified[(str(runtime_dir.resolve()), T)] = current
        logger.debug(f"Recorded runtime stamp for '{T}': {current[:12]}...")

    def invalidate(self, runtime_dir: Path, T: str, objects: Iterable[Path]) -> None:
        """Deletes stale objects and the stamp so the next build starts clean."""
        self._verified.pop((str(runtime_dir.resolve()), T), None)
        for o in objects:
            if o.exists():
                o.unlink()
        stamp = self.stamp_path(runtime_dir, T)
        if stamp.exists():
            stamp.unlink()

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
