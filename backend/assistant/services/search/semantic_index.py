from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np

from assistant.core.config import Settings, settings as default_settings
from assistant.core.logging import get_logger
from assistant.services.cache.ttl_cache import Clock, MonotonicClock

logger = get_logger(__name__)


class Embedder(Protocol):
    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]: ...

    async def generate_embedding(self, text: str) -> List[float]: ...

@dataclass(frozen=True)
class ScoredChunk:
    chunk: str
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot / (|a|*|b|); 0.0 for mismatched lengths or a zero vector."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


@dataclass(frozen=True)
class IndexSnapshot:
    chunks: Tuple[str, ...] = ()
    matrix: Optional[np.ndarray] = None
    last_update: Optional[float] = None

    @property
    def size(self) -> int:
        return len(self.chunks)

    @property
    def is_empty(self) -> bool:
        return not self.chunks


class VectorStore:
    """Chunks and vectors held as one immutable snapshot and swapped together."""

    def __init__(self):
        self._snapshot = IndexSnapshot()

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def size(self) -> int:
        return self._snapshot.size

    @property
    def is_empty(self) -> bool:
        return self._snapshot.is_empty

    @property
    def last_update(self) -> Optional[float]:
        return self._snapshot.last_update

    @property
    def chunks(self) -> Tuple[str, ...]:
        return self._snapshot.chunks

    def replace(self, chunks: Sequence[str], vectors: Sequence[Sequence[float]], *, at: float) -> int:
        if len(chunks) != len(vectors):
            raise ValueError(f"chunks/vectors length mismatch: {len(chunks)} != {len(vectors)}")
        if not chunks:
            return 0
        dim = len(vectors[0])
        pairs = [(c, v) for c, v in zip(chunks, vectors) if len(v) == dim and dim > 0]
        if not pairs:
            return 0
        matrix = np.asarray([v for _, v in pairs], dtype=np.float64)
        self._snapshot = IndexSnapshot(
            chunks=tuple(c for c, _ in pairs),
            matrix=matrix,
            last_update=at,
        )
        return len(pairs)

    def clear(self) -> None:
        self._snapshot = IndexSnapshot()


class SemanticIndex:
    """Embedding index over catalog chunks.

    Built at most once per process unless invalidated. Concurrent callers of
    `ensure_indexed` share one pending build.
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        self.embedder = embedder
        self.clock: Clock = clock or MonotonicClock()
        self.config = config or default_settings
        self.store = VectorStore()
        self._ready = False
        self._pending: Optional["asyncio.Task[int]"] = None
        self.builds_started = 0

    @property
    def ready(self) -> bool:
        return self._ready

    async def build(self, chunks: Sequence[str]) -> int:
        capped = list(chunks)[: self.config.MAX_INDEX_CHUNKS]
        if len(chunks) > len(capped):
            logger.warning(f"Index capped at {len(capped)} of {len(chunks)} chunks")
        if not capped:
            logger.warning("No chunks to index")
            return 0

        batch_size = max(1, self.config.EMBEDDING_BATCH_SIZE)
        delay = self.config.EMBEDDING_BATCH_DELAY_SECONDS
        kept_chunks: List[str] = []
        kept_vectors: List[List[float]] = []

        for start in range(0, len(capped), batch_size):
            batch = capped[start : start + batch_size]
            try:
                vectors = await self.embedder.generate_embeddings_batch(batch)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Embedding batch at {start} failed, skipping: {e}")
                vectors = []
            # Keep only chunk/vector pairs the service actually returned, in order.
            n = min(len(batch), len(vectors))
            kept_chunks.extend(batch[:n])
            kept_vectors.extend(list(v) for v in vectors[:n])
            if delay > 0 and start + batch_size < len(capped):
                await asyncio.sleep(delay)

        if not kept_vectors:
            logger.warning("Embedding service returned no vectors; index left unchanged")
            return 0

        indexed = self.store.replace(kept_chunks, kept_vectors, at=self.clock.now())
        if indexed < len(capped):
            logger.warning(f"Indexed {indexed} of {len(capped)} chunks (partial)")
        else:
            logger.info(f"Indexed {indexed} product chunks")
        return indexed

    async def _build_and_mark(self, chunks: Sequence[str]) -> int:
        count = await self.build(chunks)
        if count > 0:
            self._ready = True
        return count

    def _on_build_done(self, task: "asyncio.Task[int]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Semantic index build failed: {exc}")

    async def ensure_indexed(self, chunks: Sequence[str], timeout: Optional[float] = None) -> bool:
        """Start (or join) the one-time build and wait up to `timeout` for it.

        On timeout the build keeps running for later callers; this caller just
        proceeds without semantic retrieval.
        """
        if self._ready:
            return True
        if not chunks:
            return False

        if self._pending is None or self._pending.done():
            self.builds_started += 1
            self._pending = asyncio.ensure_future(self._build_and_mark(list(chunks)))
            self._pending.add_done_callback(self._on_build_done)
        pending = self._pending

        budget = self.config.INDEXING_TIMEOUT if timeout is None else timeout
        try:
            await asyncio.wait_for(asyncio.shield(pending), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning(f"Indexing not finished within {budget}s, continuing without semantic search")
            return False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Indexing failed, continuing without semantic search: {e}")
            return False
        return self._ready

    def invalidate(self) -> None:
        """Forget the ready flag so the next `ensure_indexed` rebuilds.

        The current vectors stay queryable until a rebuild replaces them.
        """
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._ready = False

    def needs_refresh(self) -> bool:
        last = self.store.last_update
        if self.store.is_empty or last is None:
            return True
        return (self.clock.now() - last) >= self.config.VECTOR_INDEX_STALE_SECONDS

    async def query(self, text: str, top_k: int) -> List[ScoredChunk]:
        snapshot = self.store.snapshot()
        if snapshot.is_empty or snapshot.matrix is None or top_k <= 0:
            return []

        query_vec = np.asarray(await self.embedder.generate_embedding(text), dtype=np.float64)
        if query_vec.ndim != 1 or query_vec.shape[0] != snapshot.matrix.shape[1]:
            logger.warning("Query embedding dimension does not match the index")
            return []

        q_norm = float(np.linalg.norm(query_vec))
        row_norms = np.linalg.norm(snapshot.matrix, axis=1)
        denom = row_norms * q_norm
        dots = snapshot.matrix @ query_vec
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)

        order = np.argsort(-scores, kind="stable")[: min(top_k, snapshot.size)]
        return [ScoredChunk(chunk=snapshot.chunks[i], score=float(scores[i])) for i in order]


def format_relevant_content(query: str, results: Sequence[ScoredChunk]) -> str:
    if not results:
        return ""
    parts = [f'\n=== MOST RELEVANT CONTENT FOR: "{query}" ===\n\n']
    for item in results:
        parts.append(f"[Relevance Score: {item.score:.3f}]\n")
        parts.append(f"{item.chunk}\n\n")
    parts.append("=== END RELEVANT CONTENT ===\n")
    return "".join(parts)
