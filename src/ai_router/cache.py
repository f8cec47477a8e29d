"""
ai-router: Response cache with optional semantic matching.

Caches provider responses keyed on the fully expanded prompt, so the
same question asked in the same terminal context is answered without a
provider call. Persists to SQLite (or in-memory).

Lookup strategy:
1. Exact SHA-256 match of the prompt text
2. Cosine similarity of sentence-transformer embeddings, when the
   ``cache`` extra is installed (pip install ai-router[cache])

Entries expire after ``ttl_hours`` and the least recently accessed
entries are evicted beyond ``max_entries``.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from ai_router.extract import extract_commands, extract_suggestions
from ai_router.models import AIResponse

logger = logging.getLogger(__name__)

_numpy = None
_sentence_transformers = None


def _import_numpy():  # type: ignore[return]
    global _numpy
    if _numpy is None:
        try:
            import numpy

            _numpy = numpy
        except ImportError as err:
            raise ImportError(
                "numpy is required for semantic caching. "
                "Install with: pip install ai-router[cache]"
            ) from err
    return _numpy


def _import_sentence_transformers():  # type: ignore[return]
    global _sentence_transformers
    if _sentence_transformers is None:
        try:
            import sentence_transformers

            _sentence_transformers = sentence_transformers
        except ImportError as err:
            raise ImportError(
                "sentence-transformers is required for semantic caching. "
                "Install with: pip install ai-router[cache]"
            ) from err
    return _sentence_transformers


@dataclass
class CacheStats:
    """Cache hit/miss counters."""

    lookups: int = 0
    hits: int = 0
    misses: int = 0
    exact_hits: int = 0
    semantic_hits: int = 0
    entries: int = 0
    tokens_saved: int = 0
    cost_saved: float = 0.0
    avg_similarity: float = 0.0
    _similarity_count: int = field(default=0, repr=False)

    @property
    def hit_rate(self) -> float:
        if self.lookups == 0:
            return 0.0
        return self.hits / self.lookups


class ResponseCache:
    """SQLite-backed response cache.

    Example::

        cache = ResponseCache(similarity_threshold=0.92, ttl_hours=24)
        hit = cache.lookup(prompt)
        if hit is None:
            response = await provider.generate_response(request)
            cache.store(prompt, response)
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        similarity_threshold: float = 0.92,
        ttl_hours: float = 24,
        max_entries: int = 10000,
        embedding_model: str = "all-MiniLM-L6-v2",
        semantic: bool = True,
    ) -> None:
        """Initialize the cache.

        Args:
            db_path: SQLite database path. ":memory:" for an in-memory cache.
            similarity_threshold: Minimum cosine similarity for a semantic hit.
            ttl_hours: Entry time-to-live in hours.
            max_entries: Entries kept before LRU eviction.
            embedding_model: Sentence-transformer model for prompt embeddings.
            semantic: Disable to use exact matching only.
        """
        self.similarity_threshold = similarity_threshold
        self.ttl_hours = ttl_hours
        self.max_entries = max_entries
        self.semantic = semantic
        self._embedding_model_name = embedding_model
        self._model = None
        self._lock = threading.Lock()
        self.stats = CacheStats()

        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.execute("PRAGMA journal_mode=WAL")
        self._init_db()

    def _init_db(self) -> None:
        self._db.execute("""
            CREATE TABLE IF NOT EXISTS responses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                prompt_hash TEXT UNIQUE NOT NULL,
                prompt_text TEXT NOT NULL,
                text TEXT NOT NULL,
                model TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                tokens INTEGER DEFAULT 0,
                cost REAL DEFAULT 0,
                embedding BLOB,
                created_at REAL NOT NULL,
                last_accessed REAL NOT NULL,
                access_count INTEGER DEFAULT 0
            )
        """)
        self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_responses_accessed ON responses(last_accessed)"
        )
        self._db.commit()
        self.stats.entries = self._count()

    def _count(self) -> int:
        return self._db.execute("SELECT COUNT(*) FROM responses").fetchone()[0]

    def _embed(self, text: str) -> Any:
        """Embedding vector for ``text``. Raises ImportError without the extra."""
        if not self.semantic:
            raise ImportError("semantic matching disabled")
        np = _import_numpy()
        if self._model is None:
            st = _import_sentence_transformers()
            self._model = st.SentenceTransformer(self._embedding_model_name)
            logger.info(f"Loaded embedding model: {self._embedding_model_name}")
        embedding = self._model.encode(text, convert_to_numpy=True)
        return np.array(embedding, dtype=np.float32)

    @staticmethod
    def _cosine_similarity(a: Any, b: Any) -> float:
        np = _import_numpy()
        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a == 0 or norm_b == 0:
            return 0.0
        return float(np.dot(a, b) / (norm_a * norm_b))

    @staticmethod
    def _hash(prompt: str) -> str:
        return hashlib.sha256(prompt.encode()).hexdigest()

    def _expired(self, created_at: float, now: float) -> bool:
        return (now - created_at) / 3600 > self.ttl_hours

    def _hit(self, row_id: int, row: tuple[Any, ...], now: float) -> AIResponse:
        text, model, provider_id, tokens, cost = row
        self._db.execute(
            "UPDATE responses SET last_accessed = ?, access_count = access_count + 1 "
            "WHERE id = ?",
            (now, row_id),
        )
        self._db.commit()
        self.stats.hits += 1
        self.stats.tokens_saved += tokens
        self.stats.cost_saved += cost
        return AIResponse(
            text=text,
            model=model,
            provider_id=provider_id,
            tokens=tokens,
            cost=0.0,
            response_time_ms=0.0,
            cached=True,
            suggestions=extract_suggestions(text),
            commands=extract_commands(text),
        )

    def lookup(self, prompt: str) -> tuple[AIResponse, float] | None:
        """Find a cached response for ``prompt``.

        Returns:
            ``(response, similarity)`` on a hit, else None. Cached responses
            carry ``cached=True`` and zero cost.
        """
        with self._lock:
            self.stats.lookups += 1
            now = time.time()

            row = self._db.execute(
                "SELECT id, text, model, provider_id, tokens, cost, created_at "
                "FROM responses WHERE prompt_hash = ?",
                (self._hash(prompt),),
            ).fetchone()
            if row and not self._expired(row[6], now):
                self.stats.exact_hits += 1
                return self._hit(row[0], row[1:6], now), 1.0

            try:
                query = self._embed(prompt)
            except ImportError:
                self.stats.misses += 1
                return None

            np = _import_numpy()
            best_similarity = 0.0
            best_row = None
            for row in self._db.execute(
                "SELECT id, text, model, provider_id, tokens, cost, created_at, embedding "
                "FROM responses WHERE embedding IS NOT NULL"
            ).fetchall():
                if self._expired(row[6], now):
                    continue
                similarity = self._cosine_similarity(
                    query, np.frombuffer(row[7], dtype=np.float32)
                )
                if similarity > best_similarity:
                    best_similarity = similarity
                    best_row = row

            if best_row is not None and best_similarity >= self.similarity_threshold:
                self.stats.semantic_hits += 1
                self.stats._similarity_count += 1
                self.stats.avg_similarity += (
                    best_similarity - self.stats.avg_similarity
                ) / self.stats._similarity_count
                response = self._hit(best_row[0], best_row[1:6], now)
                return response, best_similarity

            self.stats.misses += 1
            return None

    def store(self, prompt: str, response: AIResponse) -> None:
        """Cache ``response`` under ``prompt``. Empty responses are skipped."""
        if not response.text or response.cached:
            return

        with self._lock:
            now = time.time()
            try:
                embedding_blob = self._embed(prompt).tobytes()
            except ImportError:
                embedding_blob = None

            self._db.execute(
                "INSERT OR REPLACE INTO responses "
                "(prompt_hash, prompt_text, text, model, provider_id, tokens, cost, "
                "embedding, created_at, last_accessed, access_count) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)",
                (
                    self._hash(prompt),
                    prompt,
                    response.text,
                    response.model,
                    response.provider_id,
                    response.tokens,
                    response.cost,
                    embedding_blob,
                    now,
                    now,
                ),
            )
            self._db.commit()
            self.stats.entries = self._count()
            if self.stats.entries > self.max_entries:
                self._evict()

    def _evict(self) -> None:
        overflow = self.stats.entries - self.max_entries
        if overflow <= 0:
            return
        self._db.execute(
            "DELETE FROM responses WHERE id IN ("
            "  SELECT id FROM responses ORDER BY last_accessed ASC LIMIT ?"
            ")",
            (overflow,),
        )
        self._db.commit()
        self.stats.entries = self._count()
        logger.debug(f"Cache evicted {overflow} entries (LRU)")

    def clear(self) -> None:
        with self._lock:
            self._db.execute("DELETE FROM responses")
            self._db.commit()
            self.stats.entries = 0

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "lookups": self.stats.lookups,
                "hits": self.stats.hits,
                "misses": self.stats.misses,
                "hit_rate": round(self.stats.hit_rate, 3),
                "exact_hits": self.stats.exact_hits,
                "semantic_hits": self.stats.semantic_hits,
                "entries": self.stats.entries,
                "tokens_saved": self.stats.tokens_saved,
                "cost_saved": round(self.stats.cost_saved, 6),
                "avg_similarity": round(self.stats.avg_similarity, 3),
                "similarity_threshold": self.similarity_threshold,
            }

    def close(self) -> None:
        self._db.close()
