"""
Embedding Generator

Produces fixed-length (384) L2-normalized vectors from catalyst text.

Paths:
- Hosted provider (OpenAI text-embedding-3-small, dimensions=384) when an
  `openai` credential exists
- Local sentence-transformers model when `embeddings.local_model` is set
- Deterministic hashed bag-of-words otherwise, and whenever a provider
  call fails or returns a malformed vector

EmbeddingBackfiller fills in embeddings for stored catalysts in bounded
batches until none are missing.
"""

import logging
import re
from typing import List, Optional, Protocol

import numpy as np

from integrations.openai_embeddings import OpenAIEmbeddingClient
from models.model_manager import get_model_manager
from pipeline.config import PipelineConfig, get_config
from pipeline.credentials import CredentialStore
from pipeline.errors import PersistenceError

logger = logging.getLogger(__name__)


EMBEDDING_DIM = 384
HASH_OFFSETS = 3
HASH_STRIDE = 1000

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str) -> List[str]:
    """Lowercase, strip non-alphanumerics, keep tokens longer than 2 chars."""
    normalized = _NON_ALNUM.sub("", (text or "").lower())
    return [w for w in normalized.split() if len(w) > 2]


def _string_hash(word: str) -> int:
    """32-bit signed rolling hash: h = h*31 + code, wrapped to int32."""
    h = 0
    for ch in word:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length; a zero vector stays zero."""
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def deterministic_embedding(text: str, dimension: int = EMBEDDING_DIM) -> List[float]:
    """
    Hashed bag-of-words embedding.

    Each token adds 1.0 at three positions derived from its hash.

    Args:
        text: Input text
        dimension: Vector length

    Returns:
        Unit-length vector (all zeros if the text has no usable tokens)
    """
    vector = np.zeros(dimension, dtype=np.float64)
    for word in tokenize(text):
        h = _string_hash(word)
        for i in range(HASH_OFFSETS):
            # abs(x) % n equals JS Math.abs(x % n) for negative x
            vector[abs(h + i * HASH_STRIDE) % dimension] += 1.0
    return l2_normalize(vector).tolist()


class EmbeddingProvider(Protocol):
    name: str

    def embed(self, texts: List[str]) -> List[List[float]]:
        ...


class OpenAIEmbeddingProvider:
    """Hosted provider via the OpenAI embeddings API."""

    name = "openai"

    def __init__(self, client: OpenAIEmbeddingClient):
        self.client = client

    def embed(self, texts: List[str]) -> List[List[float]]:
        return self.client.embed(texts)


class SentenceTransformerProvider:
    """Local provider via a sentence-transformers model."""

    name = "sentence-transformers"

    def __init__(self, model_name: str):
        self.model_name = model_name

    def embed(self, texts: List[str]) -> List[List[float]]:
        model = get_model_manager().get_sentence_transformer(self.model_name)
        if model is None:
            raise RuntimeError(f"Model {self.model_name} unavailable")
        vectors = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [list(map(float, v)) for v in vectors]


class EmbeddingGenerator:
    """
    Generates catalyst embeddings.

    The output contract is the same for every path: length `dimension`,
    unit L2 norm for any text with at least one usable token.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        credentials: Optional[CredentialStore] = None,
        provider: Optional[EmbeddingProvider] = None
    ):
        """
        Initialize generator.

        Args:
            config: Pipeline configuration
            credentials: Credential store (looked up for `openai`)
            provider: Explicit provider (overrides credential/config selection)
        """
        self.config = config or get_config()
        self.settings = self.config.section("embeddings")
        self.dimension = self.settings.get("dimension", EMBEDDING_DIM)
        self.provider = provider or self._select_provider(credentials)

        logger.info(f"EmbeddingGenerator using {self.provider.name if self.provider else 'deterministic'} path")

    def _select_provider(self, credentials: Optional[CredentialStore]) -> Optional[EmbeddingProvider]:
        cred = credentials.lookup("openai") if credentials else None
        if cred is not None:
            client = OpenAIEmbeddingClient(
                api_key=cred.api_key,
                model=self.settings.get("provider_model", "text-embedding-3-small"),
                dimensions=self.dimension,
            )
            return OpenAIEmbeddingProvider(client)

        local_model = self.settings.get("local_model")
        if local_model:
            return SentenceTransformerProvider(local_model)
        return None

    @property
    def batch_size(self) -> int:
        if self.provider is not None:
            return self.settings.get("provider_batch_size", 50)
        return self.settings.get("batch_size", 100)

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts.

        Provider output is validated and re-normalized; any failure or
        malformed vector falls back to the deterministic path for that text.
        """
        if self.provider is None:
            return [deterministic_embedding(t, self.dimension) for t in texts]

        usable = [i for i, t in enumerate(texts) if tokenize(t)]
        results: List[Optional[List[float]]] = [None] * len(texts)

        if usable:
            try:
                vectors = self.provider.embed([texts[i] for i in usable])
                if len(vectors) != len(usable):
                    raise ValueError(f"expected {len(usable)} vectors, got {len(vectors)}")
                for i, vector in zip(usable, vectors):
                    results[i] = self._validated(vector)
            except Exception as e:
                logger.warning(f"{self.provider.name} embedding failed, using deterministic fallback: {e}")

        return [
            r if r is not None else deterministic_embedding(texts[i], self.dimension)
            for i, r in enumerate(results)
        ]

    def _validated(self, vector: List[float]) -> Optional[List[float]]:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.shape != (self.dimension,) or not np.all(np.isfinite(arr)):
            logger.warning(f"Provider returned malformed vector of shape {arr.shape}")
            return None
        if np.linalg.norm(arr) == 0:
            return None
        return l2_normalize(arr).tolist()


class EmbeddingBackfiller:
    """Fills missing embeddings for stored catalysts, batch by batch."""

    def __init__(self, store, generator: EmbeddingGenerator):
        self.store = store
        self.generator = generator

    def run(self, max_batches: Optional[int] = None) -> int:
        """
        Process batches until no catalyst lacks an embedding.

        Args:
            max_batches: Stop after this many batches (None = until exhausted)

        Returns:
            Number of catalysts embedded
        """
        processed = 0
        batches = 0

        while max_batches is None or batches < max_batches:
            batch = self.store.missing_embeddings(self.generator.batch_size)
            if not batch:
                break
            batches += 1

            texts = [c.embedding_text() for c in batch]
            vectors = self.generator.embed_many(texts)

            written = 0
            for catalyst, text, vector in zip(batch, texts, vectors):
                try:
                    self.store.set_embedding(catalyst.id, vector, text)
                    written += 1
                except PersistenceError as e:
                    logger.error(f"Could not store embedding for catalyst {catalyst.id}: {e}")

            processed += written
            logger.info(f"Embedding batch {batches}: {written}/{len(batch)} stored")

            if written == 0:
                # every write failed; the same rows would come back forever
                break

        logger.info(f"Generated embeddings for {processed} catalysts")
        return processed
