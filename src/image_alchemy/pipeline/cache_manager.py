import collections
import threading
from typing import List, Optional

from loguru import logger
from PIL import Image

_BYTES_PER_SAMPLE = {"I;16": 2}


class CachedFrames:
    """
    Realised frames of one lazy image node
    """
    def __init__(self, key: int, frames: List[Image.Image]):
        self.key = key
        self.frames = frames

        # Calculate approximate size in MB
        total = 0
        for frame in frames:
            width, height = frame.size
            total += width * height * len(frame.getbands()) * _BYTES_PER_SAMPLE.get(frame.mode, 1)
        self.size_mb = total / (1024 * 1024)


class ImageCacheManager:
    """
    LRU cache of realised nodes, one instance per worker thread.
    """
    def __init__(self, max_items: int = 8, max_memory_mb: int = 256):
        self.max_items = max_items
        self.max_memory_mb = max_memory_mb
        self.cache = collections.OrderedDict()
        self.lock = threading.Lock()
        self.current_memory_mb = 0.0

    def get(self, key: int) -> Optional[List[Image.Image]]:
        with self.lock:
            if key in self.cache:
                # Move to end (mark as recently used)
                self.cache.move_to_end(key)
                return self.cache[key].frames
            return None

    def put(self, key: int, frames: List[Image.Image]):
        item = CachedFrames(key, frames)
        with self.lock:
            if key in self.cache:
                old_item = self.cache.pop(key)
                self.current_memory_mb -= old_item.size_mb

            self.cache[key] = item
            self.current_memory_mb += item.size_mb

            self._evict_if_needed()

            logger.trace(f"[Cache] Added node {key}. Items: {len(self.cache)}, Mem: {self.current_memory_mb:.1f}MB")

    def _evict_if_needed(self):
        # 1. Check item count
        while len(self.cache) > self.max_items:
            key, item = self.cache.popitem(last=False)  # Pop first (LRU)
            self.current_memory_mb -= item.size_mb
            logger.trace(f"[Cache] Evicted (Count Update) node {key}. Mem: {self.current_memory_mb:.1f}MB")

        # 2. Check memory usage
        while self.current_memory_mb > self.max_memory_mb and len(self.cache) > 0:
            # Always keep at least 1 item (the one just realised)
            if len(self.cache) <= 1:
                break

            key, item = self.cache.popitem(last=False)
            self.current_memory_mb -= item.size_mb
            logger.trace(f"[Cache] Evicted (Memory Limit) node {key}. Mem: {self.current_memory_mb:.1f}MB")

    def __len__(self) -> int:
        with self.lock:
            return len(self.cache)

    def clear(self):
        with self.lock:
            self.cache.clear()
            self.current_memory_mb = 0.0
