"""
Mining Cache - bounded file-content cache for a single discovery run

Entries are validated against the file's mtime on every hit and evicted
least-recently-used first when either the entry-count ceiling or the memory
ceiling would be exceeded. The owning run must call clear() when done.

Also provides the directory walkers used by the miners.
"""

import logging
import math
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

MAX_CACHE_FILE_SIZE = 5 * 1024 * 1024
MAX_CACHED_FILES = 5000
MAX_CACHE_MEMORY = 100 * 1024 * 1024
EVICTION_BATCH_PERCENT = 0.1
# Strings are accounted at two bytes per character
BYTES_PER_CHAR = 2

SOURCE_DIRECTORIES = [
    # core
    "src", "app",
    # components
    "components", "lib",
    # pages / views
    "pages", "views",
    # models / types
    "models", "entities", "types",
    # routes
    "routes",
    # forms
    "forms", "schemas", "validation",
    # tables
    "tables", "grids",
    # modals
    "modals", "dialogs",
    # other common layouts
    "features", "modules", "services", "utils", "helpers", "api", "stores",
    "hooks", "contexts", "providers", "layouts", "shared", "common",
]

DEFAULT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".vue", ".svelte")
SKIPPED_DIRECTORIES = {"node_modules", "dist", "build", "coverage", "__pycache__"}

DEFAULT_MAX_DEPTH = 15
DEFAULT_MAX_FILES = 3000


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    skipped: int = 0
    invalidations: int = 0
    evictions: int = 0
    cache_size: int = 0
    memory_usage: int = 0
    total_bytes_read: int = 0


class _LRUNode:
    __slots__ = ("key", "prev", "next")

    def __init__(self, key: str):
        self.key = key
        self.prev: Optional["_LRUNode"] = None
        self.next: Optional["_LRUNode"] = None


@dataclass
class CacheEntry:
    path: str
    content: str
    byte_size: int
    modified_time: int
    last_accessed: float
    node: _LRUNode = field(repr=False)


class MiningCache:
    """
    LRU content cache keyed by absolute path.

    The recency list is doubly linked (head = most recent) so touch and evict
    are O(1).
    """

    def __init__(
        self,
        validate_mtime: bool = True,
        max_files: int = MAX_CACHED_FILES,
        max_memory: int = MAX_CACHE_MEMORY,
        max_file_size: int = MAX_CACHE_FILE_SIZE,
    ):
        self.validate_mtime = validate_mtime
        self.max_files = max_files
        self.max_memory = max_memory
        self.max_file_size = max_file_size

        self._entries: Dict[str, CacheEntry] = {}
        self._memory = 0
        self._head: Optional[_LRUNode] = None
        self._tail: Optional[_LRUNode] = None
        self._stats = CacheStats()
        self._lock = threading.Lock()

    # ==================== Public API ====================

    def get_content(self, file_path) -> Optional[str]:
        """
        Read-through lookup. Returns None for symlinks, oversized files and
        anything unreadable.
        """
        key = os.path.abspath(file_path)

        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                if not self.validate_mtime:
                    return self._touch(cached)
                try:
                    st = os.lstat(key)
                except OSError:
                    self._remove(key)
                    return None
                if os.path.islink(key):
                    self._remove(key)
                    return None
                if st.st_mtime_ns == cached.modified_time:
                    return self._touch(cached)
                self._remove(key)
                self._stats.invalidations += 1

            try:
                st = os.lstat(key)
            except OSError:
                return None
            if os.path.islink(key):
                return None
            if st.st_size > self.max_file_size:
                self._stats.skipped += 1
                logger.debug(f"Skipping oversized file {key} ({st.st_size} bytes)")
                return None

            try:
                with open(key, "r", encoding="utf-8", errors="replace") as f:
                    content = f.read()
            except OSError as e:
                logger.debug(f"Unreadable file {key}: {e}")
                return None

            size = len(content) * BYTES_PER_CHAR
            self._stats.total_bytes_read += st.st_size
            self._stats.misses += 1

            if size <= self.max_memory:
                self._ensure_capacity(size)
                self._add(CacheEntry(
                    path=key,
                    content=content,
                    byte_size=size,
                    modified_time=st.st_mtime_ns,
                    last_accessed=time.time(),
                    node=_LRUNode(key),
                ))
            return content

    def has(self, file_path) -> bool:
        return os.path.abspath(file_path) in self._entries

    def invalidate(self, file_path) -> bool:
        key = os.path.abspath(file_path)
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            self._stats.invalidations += 1
            return True

    def warm_up(self, files: Iterable[Dict]) -> None:
        """
        Pre-seed entries without reading from disk.

        Each item: {"path", "content", optional "mtime" (ns), optional "size"}.
        Seeding stops at the first entry that would overflow memory.
        """
        with self._lock:
            for item in files:
                key = os.path.abspath(item["path"])
                content = item["content"]
                size = item.get("size") or len(content) * BYTES_PER_CHAR
                if size > self.max_file_size:
                    continue
                if self._memory + size > self.max_memory:
                    break

                mtime = item.get("mtime")
                if mtime is None:
                    if os.path.islink(key):
                        continue
                    try:
                        mtime = os.lstat(key).st_mtime_ns
                    except OSError:
                        mtime = time.time_ns()

                if key in self._entries:
                    self._remove(key)
                self._ensure_capacity(size)
                self._add(CacheEntry(
                    path=key,
                    content=content,
                    byte_size=size,
                    modified_time=mtime,
                    last_accessed=time.time(),
                    node=_LRUNode(key),
                ))

    def get_stats(self) -> CacheStats:
        return CacheStats(**vars(self._stats))

    def get_hit_rate(self) -> int:
        """Hit rate as an integer percentage."""
        total = self._stats.hits + self._stats.misses
        if total == 0:
            return 0
        return round(self._stats.hits / total * 100)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._memory = 0
            self._head = None
            self._tail = None
            self._stats = CacheStats()

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def memory_usage(self) -> int:
        return self._memory

    # ==================== LRU internals ====================

    def _touch(self, entry: CacheEntry) -> str:
        entry.last_accessed = time.time()
        self._move_to_head(entry.node)
        self._stats.hits += 1
        return entry.content

    def _ensure_capacity(self, required: int) -> None:
        if len(self._entries) >= self.max_files:
            self._evict(math.ceil(self.max_files * EVICTION_BATCH_PERCENT))
        while self._memory + required > self.max_memory and self._entries:
            self._evict(1)

    def _evict(self, count: int) -> None:
        for _ in range(count):
            if self._tail is None:
                return
            self._remove(self._tail.key)
            self._stats.evictions += 1

    def _move_to_head(self, node: _LRUNode) -> None:
        if node is self._head:
            return
        self._unlink(node)
        node.prev = None
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node

    def _unlink(self, node: _LRUNode) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        elif self._head is node:
            self._head = node.next
        if node.next is not None:
            node.next.prev = node.prev
        elif self._tail is node:
            self._tail = node.prev
        node.prev = None
        node.next = None

    def _add(self, entry: CacheEntry) -> None:
        self._entries[entry.path] = entry
        self._memory += entry.byte_size
        self._move_to_head(entry.node)
        self._stats.cache_size = len(self._entries)
        self._stats.memory_usage = self._memory

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self._unlink(entry.node)
        self._memory -= entry.byte_size
        self._stats.cache_size = len(self._entries)
        self._stats.memory_usage = self._memory


# ==================== Directory scanning ====================

@dataclass
class ScannedFile:
    path: str
    content: str


def scan_directory(
    directory,
    cache: MiningCache,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_files: int = DEFAULT_MAX_FILES,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> List[ScannedFile]:
    """
    Walk a directory tree and read matching source files through the cache.

    Hidden, dependency and build directories and all symlinks are skipped.
    Hitting max_depth or max_files stops the walk with partial results.
    """
    extensions = tuple(extensions)
    files: List[ScannedFile] = []

    def walk(current: str, depth: int) -> None:
        if depth > max_depth or len(files) >= max_files:
            return
        try:
            entries = sorted(os.scandir(current), key=lambda e: e.name)
        except OSError:
            return

        for entry in entries:
            if len(files) >= max_files:
                break
            if entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                if entry.name.startswith(".") or entry.name in SKIPPED_DIRECTORIES:
                    continue
                walk(entry.path, depth + 1)
            elif entry.is_file(follow_symlinks=False) and entry.name.endswith(extensions):
                content = cache.get_content(entry.path)
                if content is not None:
                    files.append(ScannedFile(path=entry.path, content=content))

    walk(str(directory), 0)
    return files


def scan_all_source_directories(
    project_root,
    cache: MiningCache,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_files: int = DEFAULT_MAX_FILES,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> List[ScannedFile]:
    """Scan every conventional source directory under project_root, deduplicated by path."""
    root = os.path.realpath(project_root)
    all_files: List[ScannedFile] = []
    seen: Set[str] = set()

    for name in SOURCE_DIRECTORIES:
        full_path = os.path.join(root, name)
        resolved = os.path.realpath(full_path)
        if resolved != root and not resolved.startswith(root + os.sep):
            logger.debug(f"Skipping {full_path}: resolves outside project root")
            continue
        if os.path.islink(full_path) or not os.path.isdir(full_path):
            continue

        for scanned in scan_directory(full_path, cache, max_depth, max_files, extensions):
            if scanned.path not in seen:
                seen.add(scanned.path)
                all_files.append(scanned)

    return all_files


def create_cache_from_files(files: Iterable[ScannedFile]) -> MiningCache:
    """Cache pre-populated from already-read files, without mtime validation."""
    cache = MiningCache(validate_mtime=False)
    cache.warm_up({"path": f.path, "content": f.content} for f in files)
    return cache
