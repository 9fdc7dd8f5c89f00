"""
Embedding adapter: turn item text into vectors.

Any callable mapping ``list[str]`` to ``list[list[float]]`` works as an
embedding function.  :func:`get_embedding_function` returns ChromaDB's
sentence-transformers embedding function, which downloads and runs the model
locally.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from chromadb.utils import embedding_functions

from .collection import Collection

logger = logging.getLogger(__name__)

EmbeddingFunction = Callable[[list[str]], Sequence[Sequence[float]]]

#: Default sentence-transformers model.
DEFAULT_MODEL: str = "all-MiniLM-L6-v2"

#: Data field read as an item's text.
DEFAULT_TEXT_FIELD: str = "content"

#: Number of texts sent to the embedding function per call.
DEFAULT_BATCH_SIZE: int = 32


def get_embedding_function(
    model_name: str = DEFAULT_MODEL,
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a sentence-transformer embedding function."""
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=model_name
    )


def _to_floats(vector: Any) -> list[float]:
    # Embedding functions may return numpy arrays.
    return [float(x) for x in vector]


def embed_query(text: str, embedding_function: EmbeddingFunction) -> list[float]:
    """Embed a single query string."""
    return _to_floats(embedding_function([text])[0])


def embed_pending(
    collection: Collection,
    embedding_function: EmbeddingFunction,
    text_field: str = DEFAULT_TEXT_FIELD,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[str]:
    """
    Embed every item that has text in *text_field* but no vector yet.

    Vectors are attached with :meth:`Collection.set_vector`, which queues the
    save.  Returns the keys that were embedded, in collection order.
    """
    queue = [
        item
        for item in collection.items()
        if not item.has_vector and isinstance(item.data.get(text_field), str) and item.data[text_field].strip()
    ]
    if not queue:
        return []

    embedded: list[str] = []
    for start in range(0, len(queue), max(batch_size, 1)):
        batch = queue[start : start + max(batch_size, 1)]
        vectors = embedding_function([item.data[text_field] for item in batch])
        for item, vector in zip(batch, vectors):
            collection.set_vector(item.key, _to_floats(vector))
            embedded.append(item.key)
        logger.debug("Embedded batch of %d item(s)", len(batch))

    logger.info("Embedded %d item(s) in collection %s", len(embedded), collection.name)
    return embedded
