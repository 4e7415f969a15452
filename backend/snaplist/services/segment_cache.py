"""
Approximate in‑memory cache for segment results keyed by mask content.

Hovering over the same object twice rarely produces a bit‑identical
mask, so an exact key (a hash of the bytes) would almost never hit.
This cache instead files every stored mask under a set of coarse
locality‑sensitive bucket keys and, on lookup, compares the query mask
against every record that shares at least one bucket using the exact
intersection‑over‑union of the full masks.

Signatures
    Each of ``num_hashes`` hash functions samples ``hash_size`` pixels
    at positions ``(h * 12345 + i * 7919) % len(mask)`` and shifts one
    bit per sampled pixel (``1`` for foreground) into an integer.  The
    sampling sequence is fixed, so equal masks always produce equal
    signatures.

Buckets
    A record is filed under ``"h{i}_{value}"`` for every hash value and
    ``"p{i}_{value_i}_{value_i+1}"`` for every adjacent pair.  Buckets
    hold references; records are owned by the cache's record table.

The cache is not a module global.  Callers construct an
:class:`LSHMaskCache` and pass it where it is needed (the API keeps one
per application).  A reentrant lock serialises every public operation.

By default the cache grows without bound for the lifetime of the
process.  Passing ``max_records`` enables least‑recently‑used eviction;
a record returned by :meth:`LSHMaskCache.find_best_match` counts as
used.

Usage::

    cache: LSHMaskCache[dict] = LSHMaskCache()
    match = cache.find_best_match(mask)
    if match is None:
        result = expensive(mask)
        cache.store(mask, result, dims=(width, height))
    else:
        result = match.record.result
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from threading import RLock
from typing import Any, Callable, Dict, Generic, List, NamedTuple, Optional, Tuple, TypeVar

import numpy as np

from .masks import (
    DimensionMismatchError,
    MaskBuffer,
    as_mask_buffer,
    calculate_iou,
    check_dimensions,
    foreground,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NUM_HASHES: int = 16
DEFAULT_HASH_SIZE: int = 64
DEFAULT_SIMILARITY_THRESHOLD: float = 0.9

# Multipliers of the sampling sequence.
_SEED_STEP = 12345
_INDEX_STEP = 7919


@dataclass(frozen=True)
class SegmentRecord(Generic[T]):
    """A cached mask together with the result computed for it.

    Attributes:
        id: Identifier assigned by the cache (``"cache_<n>"``).
        mask: Read‑only copy of the stored mask.
        result: Caller supplied payload.
        signature: ``num_hashes`` sampled hash values of ``mask``.
        dims: ``(width, height)`` the mask was stored with, if known.
    """

    id: str
    mask: MaskBuffer
    result: T
    signature: Tuple[int, ...]
    dims: Optional[Tuple[int, int]] = None


class CacheMatch(NamedTuple):
    """A record returned by a lookup with its IoU against the query."""

    record: SegmentRecord
    iou: float


@lru_cache(maxsize=32)
def _sample_indices(length: int, num_hashes: int, hash_size: int) -> np.ndarray:
    seeds = np.arange(num_hashes, dtype=np.int64)[:, None] * _SEED_STEP
    steps = np.arange(hash_size, dtype=np.int64)[None, :] * _INDEX_STEP
    indices = (seeds + steps) % length
    indices.setflags(write=False)
    return indices


class LSHMaskCache(Generic[T]):
    """Similarity‑tolerant cache of results keyed by segmentation masks.

    Args:
        num_hashes: Number of sampled hash functions per signature.
        hash_size: Number of pixels sampled by each hash function.
        max_records: Optional capacity.  ``None`` keeps every record for
            the lifetime of the cache.
    """

    def __init__(
        self,
        num_hashes: int = DEFAULT_NUM_HASHES,
        hash_size: int = DEFAULT_HASH_SIZE,
        max_records: Optional[int] = None,
    ) -> None:
        if num_hashes < 0 or hash_size <= 0:
            raise ValueError("num_hashes must be >= 0 and hash_size > 0")
        if max_records is not None and max_records <= 0:
            raise ValueError("max_records must be positive when given")
        self.num_hashes = num_hashes
        self.hash_size = hash_size
        self.max_records = max_records
        self.last_lookup_ms: Optional[float] = None
        self._records: "OrderedDict[str, SegmentRecord[T]]" = OrderedDict()
        self._buckets: Dict[str, List[SegmentRecord[T]]] = {}
        self._id_counter = 0
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def signature(self, mask: MaskBuffer) -> Tuple[int, ...]:
        """Compute the sampled hash signature of ``mask``.

        Raises:
            DimensionMismatchError: If ``mask`` is empty.
        """
        buf = as_mask_buffer(mask)
        if buf.size == 0:
            raise DimensionMismatchError("Cannot hash an empty mask")
        bits = foreground(buf)[_sample_indices(buf.size, self.num_hashes, self.hash_size)]
        hashes: List[int] = []
        for row in bits:
            value = 0
            for bit in row:
                value = (value << 1) | int(bit)
            hashes.append(value)
        return tuple(hashes)

    @staticmethod
    def bucket_keys(signature: Tuple[int, ...]) -> List[str]:
        """Return the bucket keys a record with ``signature`` is filed under."""
        keys = [f"h{i}_{value}" for i, value in enumerate(signature)]
        keys.extend(
            f"p{i}_{signature[i]}_{signature[i + 1]}" for i in range(len(signature) - 1)
        )
        return keys

    def store(self, mask: MaskBuffer, result: T, dims: Optional[Tuple[int, int]] = None) -> str:
        """Store ``result`` for ``mask`` and return the new record id.

        Args:
            mask: Mask the result was computed for.  The cache keeps its
                own read‑only copy.
            result: Payload to reuse for similar masks.
            dims: Optional ``(width, height)`` validated against the
                mask length.

        Raises:
            DimensionMismatchError: If ``dims`` disagree with the mask
                length, or the mask is empty.
        """
        owned = np.array(as_mask_buffer(mask), copy=True)
        if dims is not None:
            check_dimensions(owned, dims[0], dims[1])
        owned.setflags(write=False)
        signature = self.signature(owned)
        with self._lock:
            self._id_counter += 1
            record_id = f"cache_{self._id_counter}"
            record: SegmentRecord[T] = SegmentRecord(
                id=record_id,
                mask=owned,
                result=result,
                signature=signature,
                dims=tuple(dims) if dims is not None else None,
            )
            self._records[record_id] = record
            for key in self.bucket_keys(signature):
                self._buckets.setdefault(key, []).append(record)
            if self.max_records is not None:
                while len(self._records) > self.max_records:
                    self._evict_oldest()
        logger.debug("Stored segment %s (%d values)", record_id, owned.size)
        return record_id

    def _evict_oldest(self) -> None:
        record_id, record = self._records.popitem(last=False)
        for key in self.bucket_keys(record.signature):
            bucket = self._buckets.get(key)
            if bucket is None:
                continue
            bucket[:] = [r for r in bucket if r is not record]
            if not bucket:
                del self._buckets[key]
        logger.debug("Evicted segment %s", record_id)

    def get(self, record_id: str) -> Optional[SegmentRecord[T]]:
        """Return the record with ``record_id``, or ``None``."""
        with self._lock:
            return self._records.get(record_id)

    def find_similar(
        self,
        mask: MaskBuffer,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[CacheMatch]:
        """Return stored records whose IoU with ``mask`` meets the threshold.

        Candidates are the union of all records sharing at least one
        bucket with ``mask``.  Each candidate is compared on the full
        mask and the survivors are sorted by descending IoU.

        Raises:
            DimensionMismatchError: If a candidate mask has a different
                length than ``mask``.
        """
        query = as_mask_buffer(mask)
        keys = self.bucket_keys(self.signature(query))
        with self._lock:
            candidates: Dict[str, SegmentRecord[T]] = {}
            for key in keys:
                for record in self._buckets.get(key, ()):
                    candidates.setdefault(record.id, record)
            matches: List[CacheMatch] = []
            for record in candidates.values():
                iou = calculate_iou(query, record.mask)
                logger.debug("Compared query mask with %s: IoU=%.3f", record.id, iou)
                if iou >= similarity_threshold:
                    matches.append(CacheMatch(record, iou))
        matches.sort(key=lambda m: m.iou, reverse=True)
        return matches

    def find_best_match(
        self,
        mask: MaskBuffer,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        accept: Optional[Callable[[SegmentRecord[T]], bool]] = None,
    ) -> Optional[CacheMatch]:
        """Return the highest‑IoU match above the threshold, or ``None``.

        When ``accept`` is given, records it rejects are skipped so a
        lower‑ranked acceptable record can still match.  The lookup
        duration is logged and kept in ``last_lookup_ms``.
        """
        start = time.perf_counter()
        with self._lock:
            matches = self.find_similar(mask, similarity_threshold)
            if accept is not None:
                matches = [m for m in matches if accept(m.record)]
            best = matches[0] if matches else None
            if best is not None and best.record.id in self._records:
                self._records.move_to_end(best.record.id)
            self.last_lookup_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "Segment cache lookup took %.2fms (%s)",
            self.last_lookup_ms,
            best.record.id if best else "miss",
        )
        return best

    def clear(self) -> None:
        """Drop every record and bucket."""
        with self._lock:
            self._records.clear()
            self._buckets.clear()

    def stats(self) -> Dict[str, Any]:
        """Return a summary of the cache contents for diagnostics."""
        with self._lock:
            return {
                "records": len(self._records),
                "buckets": len(self._buckets),
                "numHashes": self.num_hashes,
                "hashSize": self.hash_size,
                "maxRecords": self.max_records,
                "lastLookupMs": self.last_lookup_ms,
            }
