"""
Embedding Client

This module implements a test-friendly embedding client that uses the
OpenAI embeddings API (or any compatible provider). It is responsible for:

- Efficient batching of text inputs
- Network and transport error isolation
- Strict response validation, including vector dimensionality
- A single failure type (EmbeddingError) for every provider problem

The same model must be used for ingestion and for query embedding, otherwise
cosine similarity between stored chunks and queries is meaningless.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import EmbeddingError

logger = logging.getLogger("knowledge.embedder")


class Embedder:
    """
    Asynchronous embedding generator for batches of text.

    This class performs no caching; query-side caching lives in
    EmbeddingCache. An httpx.AsyncClient may be injected (tests pass one
    built on httpx.MockTransport); otherwise one is created per call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Optional override for the API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Optional override for the embedding model. Defaults to settings.embedding_model.

        base_url : Optional[str]
            Embeddings endpoint. Defaults to settings.embedding_api_url.

        dimensions : Optional[int]
            Expected vector length. Defaults to settings.embedding_dimensions.

        timeout : Optional[float]
            HTTP timeout for each request.

        client : Optional[httpx.AsyncClient]
            Shared client to reuse across calls.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.base_url = base_url or settings.embedding_api_url
        self.dimensions = dimensions or settings.embedding_dimensions
        self.timeout = timeout or settings.embedding_timeout
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        texts: Sequence[str],
        batch_size: int = 20,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            List or sequence of non-empty input strings.

        batch_size : int
            Maximum batch size per request.

        Returns
        -------
        List[List[float]]
            One embedding per input, in input order.

        Raises
        ------
        EmbeddingError
            If any input is blank, any batch fails, or the response is malformed.
        """
        if not texts:
            return []

        for index, text in enumerate(texts):
            if not text or not text.strip():
                raise EmbeddingError(f"Cannot embed empty text at index {index}.")

        all_embeddings: List[List[float]] = []

        if self._client is not None:
            for start in range(0, len(texts), batch_size):
                batch = list(texts[start : start + batch_size])
                all_embeddings.extend(await self._embed_batch(self._client, batch))
            return all_embeddings

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for start in range(0, len(texts), batch_size):
                batch = list(texts[start : start + batch_size])
                all_embeddings.extend(await self._embed_batch(client, batch))

        return all_embeddings

    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single string and return its vector.
        """
        embeddings = await self.embed([text])
        return embeddings[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed_batch(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> List[List[float]]:
        payload = {
            "model": self.model,
            "input": batch,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            response = await client.post(
                self.base_url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.error(
                "Embedding request failed (%s): batch size=%d, error=%s",
                type(exc).__name__,
                len(batch),
                str(exc),
            )
            raise EmbeddingError(
                f"Embedding generation failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise EmbeddingError("Embedding response is not valid JSON.") from exc

        embeddings = self._extract_embeddings(data)
        if len(embeddings) != len(batch):
            raise EmbeddingError(
                f"Expected {len(batch)} embeddings, provider returned {len(embeddings)}."
            )
        return embeddings

    def _extract_embeddings(self, data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Raises
        ------
        EmbeddingError
            If the API returns unexpected structure or wrong dimensions.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            if len(emb) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding at index {index} has {len(emb)} dimensions, "
                    f"expected {self.dimensions}."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
