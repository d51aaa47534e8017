"""Embedding clients backing the semantic similarity feature."""

from __future__ import annotations

import hashlib
import json
import math
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

DEFAULT_HASH_DIMENSIONS = 256
DEFAULT_CACHE_SIZE = 2048
_WORD_RE = re.compile(r"[a-z0-9']+")


class EmbeddingError(RuntimeError):
    """Raised when an embedding provider fails or answers nonsense."""


class EmbeddingClient(Protocol):
    """Protocol for pluggable embedding clients."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""


@dataclass(slots=True)
class OpenAIEmbeddingsClient:
    """OpenAI-compatible embeddings endpoint over stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 10.0

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        decoded = self._post("embeddings", {"model": self.model, "input": texts})
        try:
            rows = sorted(decoded["data"], key=lambda row: int(row.get("index", 0)))
            vectors = [[float(value) for value in row["embedding"]] for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError("Embeddings response did not match the expected shape") from exc
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Asked for {len(texts)} embeddings, received {len(vectors)}")
        return vectors

    def _post(self, path: str, payload: dict[str, object]) -> dict:
        req = urllib_request.Request(
            url=f"{self.base_url.rstrip('/')}/{path}",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")[:500]
            raise EmbeddingError(f"Embeddings endpoint returned HTTP {exc.code}: {body}") from exc
        except urllib_error.URLError as exc:
            raise EmbeddingError(f"Embeddings endpoint unreachable: {exc.reason}") from exc
        except json.JSONDecodeError as exc:
            raise EmbeddingError("Embeddings endpoint returned invalid JSON") from exc


@dataclass(slots=True)
class HashEmbeddingsClient:
    """Offline embeddings from hashed words and word pairs; deterministic across runs."""

    dimensions: int = DEFAULT_HASH_DIMENSIONS

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [hash_embed_text(text, dimensions=self.dimensions) for text in texts]


@dataclass
class CachingEmbeddingClient:
    """Bounded LRU in front of another client so each description is embedded once."""

    inner: EmbeddingClient
    max_entries: int = DEFAULT_CACHE_SIZE
    _vectors: OrderedDict[str, list[float]] = field(default_factory=OrderedDict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        keys = [_text_key(text) for text in texts]
        found: dict[str, list[float]] = {}
        with self._lock:
            for key in keys:
                if key in self._vectors:
                    self._vectors.move_to_end(key)
                    found[key] = self._vectors[key]

        missing = {key: text for key, text in zip(keys, texts) if key not in found}
        if missing:
            fetched = self.inner.embed_texts(list(missing.values()))
            if len(fetched) != len(missing):
                raise EmbeddingError(f"Asked for {len(missing)} embeddings, received {len(fetched)}")
            found.update(zip(missing, fetched))
            with self._lock:
                for key in missing:
                    self._vectors[key] = found[key]
                while len(self._vectors) > self.max_entries:
                    self._vectors.popitem(last=False)
        return [found[key] for key in keys]


def hash_embed_text(text: str, *, dimensions: int = DEFAULT_HASH_DIMENSIONS) -> list[float]:
    """Signed feature hashing of words and adjacent word pairs, L2-normalized."""

    words = _WORD_RE.findall((text or "").lower())
    vector = [0.0] * max(1, int(dimensions))
    shingles = words + [f"{left} {right}" for left, right in zip(words, words[1:])]
    for shingle in shingles:
        digest = hashlib.blake2b(shingle.encode("utf-8"), digest_size=16).digest()
        for offset in range(0, 8, 2):
            index = int.from_bytes(digest[offset : offset + 2], "big") % len(vector)
            vector[index] += 1.0 if digest[offset + 8] & 1 else -1.0
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0.0:
        return vector
    return [value / norm for value in vector]


def cosine_similarity(left: list[float] | None, right: list[float] | None) -> float:
    """Cosine similarity rescaled from [-1, 1] into [0, 1]; 0.0 for unusable input."""

    if not left or not right or len(left) != len(right):
        return 0.0
    dot = left_sq = right_sq = 0.0
    for left_value, right_value in zip(left, right):
        dot += left_value * right_value
        left_sq += left_value * left_value
        right_sq += right_value * right_value
    if left_sq == 0.0 or right_sq == 0.0:
        return 0.0
    cosine = dot / math.sqrt(left_sq * right_sq)
    return max(0.0, min(1.0, (cosine + 1.0) / 2.0))


def _text_key(text: str) -> str:
    return hashlib.sha256(" ".join(text.split()).encode("utf-8")).hexdigest()
