"""
Embedding Service for generating vector representations.

Two interchangeable implementations sit behind EmbeddingService:

- LocalEmbeddingService: offline hashed TF-IDF. Tokens are stemmed,
  weighted with augmented TF-IDF against a Vocabulary and projected
  into a fixed dimension with the hashing trick.
- OpenAIEmbeddingService: any OpenAI-compatible `/embeddings` endpoint.
  Every failure is downgraded to the local algorithm, so embedding can
  never block memory storage.

Also provides the vector primitives used by the stores.
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Iterable, Literal, Optional

from openai import AsyncOpenAI

from ..errors import EmbeddingProviderError
from .types import EMBEDDING_DIMENSION

logger = logging.getLogger("agent_memory.memory.embeddings")


# =============================================================================
# Vector primitives
# =============================================================================


def zero_vector(dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    return [0.0] * dimension


def vector_norm(vector: list[float]) -> float:
    return math.sqrt(sum(v * v for v in vector))


def normalize_vector(vector: list[float]) -> list[float]:
    """L2-normalize. A zero vector stays zero."""
    magnitude = vector_norm(vector)
    if magnitude == 0:
        return list(vector)
    return [v / magnitude for v in vector]


def cosine_similarity(a: Optional[list[float]], b: Optional[list[float]]) -> float:
    """
    Cosine similarity in [-1, 1].

    Returns 0 when either vector is missing, has zero magnitude, or the
    lengths differ.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    magnitude_a = vector_norm(a)
    magnitude_b = vector_norm(b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    # Clamp float drift so identical vectors never exceed 1.0
    return max(-1.0, min(1.0, dot / (magnitude_a * magnitude_b)))


def euclidean_distance(a: Optional[list[float]], b: Optional[list[float]]) -> float:
    """Euclidean distance; +inf on missing vectors or length mismatch."""
    if a is None or b is None or len(a) != len(b):
        return math.inf
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


# =============================================================================
# Text processing
# =============================================================================

STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need",
    "dare", "ought", "used", "it", "its", "it's", "this", "that", "these",
    "those", "i", "you", "he", "she", "we", "they", "me", "him", "her",
    "us", "them", "my", "your", "his", "our", "their", "mine", "yours",
    "hers", "ours", "theirs", "what", "which", "who", "whom", "whose",
    "where", "when", "why", "how", "all", "each", "every", "both", "few",
    "more", "most", "other", "some", "such", "no", "nor", "not", "only",
    "own", "same", "so", "than", "too", "very", "just", "also", "now",
    "here", "there", "then", "once", "if", "unless", "until", "while",
    "about", "against", "between", "into", "through", "during", "before",
    "after", "above", "below", "up", "down", "out", "off", "over", "under",
    "again", "further", "any", "am", "i'm", "you're", "he's", "she's",
    "we're", "they're", "i've", "you've", "we've", "they've", "i'd",
    "you'd", "he'd", "she'd", "we'd", "they'd", "i'll", "you'll", "he'll",
    "she'll", "we'll", "they'll", "isn't", "aren't", "wasn't", "weren't",
    "hasn't", "haven't", "hadn't", "doesn't", "don't", "didn't", "won't",
    "wouldn't", "shan't", "shouldn't", "can't", "cannot", "couldn't",
    "mustn't", "let's", "that's", "who's", "what's", "here's", "there's",
    "when's", "where's", "why's", "how's", "because", "although", "though",
})

# Checked in order; the first applicable suffix wins
SUFFIXES = (
    "ing", "ed", "ly", "es", "s", "ment", "ness", "tion", "sion",
    "able", "ible", "ful", "less", "ous", "ive", "al", "er", "est",
)

_PUNCTUATION_RE = re.compile(r"[^\w\s'-]")


def tokenize(text: str) -> list[str]:
    """
    Lowercase, strip punctuation (apostrophes and hyphens survive),
    drop stop-words and single-character tokens.
    """
    if not text or not isinstance(text, str):
        return []

    cleaned = _PUNCTUATION_RE.sub(" ", text.lower())
    return [
        word for word in cleaned.split()
        if len(word) > 1 and word not in STOP_WORDS
    ]


def stem(word: str) -> str:
    """Strip the first matching common suffix if the stem stays longer than 2."""
    if len(word) <= 3:
        return word

    for suffix in SUFFIXES:
        if word.endswith(suffix) and len(word) > len(suffix) + 2:
            return word[:-len(suffix)]
    return word


def term_frequencies(text: str) -> Counter:
    """Stemmed term -> occurrence count."""
    return Counter(stem(token) for token in tokenize(text))


def string_hash(value: str) -> int:
    """32-bit djb2 hash, folded to a non-negative int."""
    h = 5381
    for char in value:
        h = (h * 33 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


# =============================================================================
# Vocabulary
# =============================================================================


class Vocabulary:
    """
    Document-frequency counters for TF-IDF weighting.

    One vocabulary belongs to one memory namespace. Counters only grow,
    except on an explicit reset(). update() has no await points, so it
    is atomic with respect to other coroutines.
    """

    def __init__(self):
        self.document_frequencies: dict[str, int] = {}
        self.total_documents = 0

    def update(self, terms: Iterable[str]) -> None:
        """Record one document containing `terms`."""
        self.total_documents += 1
        for term in set(terms):
            self.document_frequencies[term] = self.document_frequencies.get(term, 0) + 1

    def document_frequency(self, term: str) -> int:
        # Unseen terms count as one document
        return self.document_frequencies.get(term) or 1

    def reset(self) -> None:
        self.document_frequencies.clear()
        self.total_documents = 0

    def __len__(self) -> int:
        return len(self.document_frequencies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDocuments": self.total_documents,
            "documentFrequencies": dict(self.document_frequencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Vocabulary":
        vocabulary = cls()
        vocabulary.total_documents = int(data.get("totalDocuments", 0))
        vocabulary.document_frequencies = {
            str(k): int(v) for k, v in (data.get("documentFrequencies") or {}).items()
        }
        return vocabulary


def hashed_tfidf_embedding(
    text: str,
    vocabulary: Vocabulary,
    dimension: int = EMBEDDING_DIMENSION,
    update_vocabulary: bool = True,
) -> list[float]:
    """
    Project text into `dimension` buckets with the hashing trick.

    Each term lands in three buckets with independent signs, contributing
    its full weight, half and a quarter. Weight is augmented TF-IDF:
    (1 + ln tf) * (ln((N + 1) / (df + 1)) + 1).
    """
    tf = term_frequencies(text)

    if update_vocabulary:
        vocabulary.update(tf.keys())

    vector = [0.0] * dimension
    n_docs = vocabulary.total_documents

    for term, freq in tf.items():
        tf_weight = 1 + math.log(freq)
        df = vocabulary.document_frequency(term)
        idf_weight = math.log((n_docs + 1) / (df + 1)) + 1
        weight = tf_weight * idf_weight

        for suffix, sign_suffix, scale in (("", "_s1", 1.0), ("_2", "_s2", 0.5), ("_3", "_s3", 0.25)):
            index = string_hash(term + suffix) % dimension
            sign = 1 if string_hash(term + sign_suffix) % 2 == 0 else -1
            vector[index] += weight * sign * scale

    return normalize_vector(vector)


# =============================================================================
# Key phrases
# =============================================================================


def extract_key_phrases(text: str) -> list[str]:
    """Top-10 frequent tokens plus adjacent bigrams, deduplicated, max 15."""
    tokens = tokenize(text)
    if not tokens:
        return []

    phrases = [word for word, _ in Counter(tokens).most_common(10)]
    phrases.extend(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))
    return list(dict.fromkeys(phrases))[:15]


def combined_similarity(
    embedding1: list[float],
    embedding2: list[float],
    text1: str,
    text2: str,
) -> float:
    """
    Blend of vector and lexical similarity in [0, 1].

    70% cosine similarity rescaled from [-1, 1], 30% Jaccard overlap of
    key phrases.
    """
    vector_sim = (cosine_similarity(embedding1, embedding2) + 1) / 2

    phrases1 = set(extract_key_phrases(text1))
    phrases2 = set(extract_key_phrases(text2))
    union = phrases1 | phrases2
    jaccard = len(phrases1 & phrases2) / len(union) if union else 0.0

    return vector_sim * 0.7 + jaccard * 0.3


# =============================================================================
# Embedding services
# =============================================================================


class EmbeddingService(ABC):
    """Abstract interface for embedding generation."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @abstractmethod
    async def embed(self, text: str, update_vocabulary: bool = True) -> list[float]:
        """Generate embedding for a single text."""
        pass

    @abstractmethod
    async def embed_batch(
        self, texts: list[str], update_vocabulary: bool = True
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        pass

    def observe(self, text: str) -> None:
        """Count `text` as a document without embedding it."""

    def reset_vocabulary(self) -> None:
        """Forget term statistics, if the service keeps any."""


class LocalEmbeddingService(EmbeddingService):
    """
    Offline hashed TF-IDF embeddings.

    Deterministic given the vocabulary state. Needs no model download
    and no network.
    """

    def __init__(
        self,
        dimension: int = EMBEDDING_DIMENSION,
        vocabulary: Optional[Vocabulary] = None,
    ):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self._dimension = dimension
        self.vocabulary = vocabulary if vocabulary is not None else Vocabulary()
        logger.debug(f"LocalEmbeddingService initialized: dimensions={dimension}")

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str, update_vocabulary: bool = True) -> list[float]:
        return hashed_tfidf_embedding(
            text,
            self.vocabulary,
            dimension=self._dimension,
            update_vocabulary=update_vocabulary,
        )

    async def embed_batch(
        self, texts: list[str], update_vocabulary: bool = True
    ) -> list[list[float]]:
        # Sequential: each text's vocabulary update must land before the next
        return [await self.embed(text, update_vocabulary) for text in texts]

    def observe(self, text: str) -> None:
        self.vocabulary.update(term_frequencies(text).keys())

    def reset_vocabulary(self) -> None:
        self.vocabulary.reset()


class OpenAIEmbeddingService(EmbeddingService):
    """
    Remote embeddings through an OpenAI-compatible API.

    Sends `POST {base_url}/embeddings` with `{input, model}`. A timeout
    wraps every request. On timeout, network error, non-2xx status,
    malformed payload or a vector of the wrong dimension the text is
    embedded by the local fallback instead; only a debug log is kept.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: str = "text-embedding-3-small",
        timeout: float = 10.0,
        request_dimensions: bool = True,
        fallback: Optional[LocalEmbeddingService] = None,
    ):
        """
        Initialize the remote embedding service.

        Args:
            api_key: API key for the provider
            base_url: Provider base URL (None = api.openai.com)
            model: Embedding model name
            timeout: Seconds before a request is abandoned for the fallback
            request_dimensions: Send `dimensions` so the provider returns
                vectors of the store's dimension (text-embedding-3 models).
                Disable for providers that reject the parameter.
            fallback: Local service used whenever the provider fails
        """
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.request_dimensions = request_dimensions
        self.fallback = fallback or LocalEmbeddingService()
        self._client: Optional[AsyncOpenAI] = None

        logger.info(
            f"OpenAIEmbeddingService initialized: model={model}, "
            f"dimensions={self.dimension}, base_url={base_url or 'default'}"
        )

    @property
    def dimension(self) -> int:
        return self.fallback.dimension

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url or None,
                max_retries=0,
            )
        return self._client

    async def _request(self, payload: "str | list[str]") -> list[list[float]]:
        """Call the provider and validate the response."""
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": payload,
        }
        if self.request_dimensions:
            kwargs["dimensions"] = self.dimension

        try:
            response = await asyncio.wait_for(
                client.embeddings.create(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingProviderError(f"Embedding request timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        expected = 1 if isinstance(payload, str) else len(payload)
        return self._parse_response(response, expected)

    def _parse_response(self, response: Any, expected: int) -> list[list[float]]:
        try:
            data = list(response.data)
            if len(data) != expected:
                raise ValueError(f"expected {expected} embeddings, got {len(data)}")
            # Keep input order when the provider reports indices
            if all(getattr(item, "index", None) is not None for item in data):
                data.sort(key=lambda item: item.index)
            vectors = [[float(v) for v in item.embedding] for item in data]
        except (AttributeError, TypeError, ValueError) as e:
            raise EmbeddingProviderError(f"Malformed embedding response: {e}") from e

        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingProviderError(
                    f"Provider returned {len(vector)} dimensions, expected {self.dimension}"
                )
        return vectors

    async def embed(self, text: str, update_vocabulary: bool = True) -> list[float]:
        """Generate embedding for a single text."""
        if not self.is_configured():
            return await self.fallback.embed(text, update_vocabulary)

        try:
            vectors = await self._request(text)
        except EmbeddingProviderError as e:
            logger.debug(f"Remote embedding failed, using local fallback: {e}")
            return await self.fallback.embed(text, update_vocabulary)

        return vectors[0]

    async def embed_batch(
        self, texts: list[str], update_vocabulary: bool = True
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts in one request."""
        if not texts:
            return []

        if not self.is_configured():
            return await self.fallback.embed_batch(texts, update_vocabulary)

        try:
            return await self._request(list(texts))
        except EmbeddingProviderError as e:
            logger.debug(f"Remote batch embedding failed, using local fallback: {e}")
            return await self.fallback.embed_batch(texts, update_vocabulary)

    def observe(self, text: str) -> None:
        self.fallback.observe(text)

    def reset_vocabulary(self) -> None:
        self.fallback.reset_vocabulary()


def create_embedding_service(
    provider: Literal["openai", "local"] = "local",
    api_key: str = "",
    base_url: Optional[str] = None,
    model: str = "",
    dimension: int = EMBEDDING_DIMENSION,
    timeout: float = 10.0,
    request_dimensions: bool = True,
    vocabulary: Optional[Vocabulary] = None,
) -> EmbeddingService:
    """
    Factory function to create the appropriate embedding service.

    Args:
        provider: "openai" (any OpenAI-compatible endpoint) or "local"
        api_key: Provider API key. Without one the local service is used.
        base_url: Provider base URL
        model: Model name (optional, uses defaults)
        dimension: Embedding dimension shared by every stored memory
        timeout: Remote request timeout in seconds
        request_dimensions: Ask the provider for `dimension`-sized vectors
        vocabulary: Vocabulary for the local algorithm (a fresh one if None)

    Returns:
        Configured EmbeddingService instance
    """
    local = LocalEmbeddingService(dimension=dimension, vocabulary=vocabulary)

    if provider == "local":
        return local
    elif provider == "openai":
        if not api_key:
            logger.info("No embedding API key configured, using local embeddings")
            return local
        return OpenAIEmbeddingService(
            api_key=api_key,
            base_url=base_url,
            model=model or "text-embedding-3-small",
            timeout=timeout,
            request_dimensions=request_dimensions,
            fallback=local,
        )
    else:
        raise ValueError(f"Unknown embedding provider: {provider}")
