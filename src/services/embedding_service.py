"""
Similarity / Embedding Service

Turns signals and posts into vectors and finds the nearest existing posts
by cosine similarity.
"""
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from openai import AsyncOpenAI

from src.config import get_settings
from src.models.feedback import FeedbackSignal
from src.models.post import FeedbackPost
from src.repositories.posts import PostRepository
from src.repositories.signals import SignalRepository
from src.utils.llm_client import LLMCriticalError, run_with_retry
from src.utils.observability import logger


@dataclass
class SimilarPost:
    post: FeedbackPost
    similarity: float


def cosine_similarities(query: List[float], candidates: List[List[float]]) -> np.ndarray:
    """Cosine similarity of `query` against each row of `candidates`."""
    matrix = np.asarray(candidates, dtype=np.float64)
    vector = np.asarray(query, dtype=np.float64)

    matrix_norms = np.linalg.norm(matrix, axis=1)
    vector_norm = np.linalg.norm(vector)
    denominator = matrix_norms * vector_norm + 1e-12
    return (matrix @ vector) / denominator


class EmbeddingService:
    """
    Usage:
        service = EmbeddingService(AsyncOpenAI(api_key=...), signal_repo, post_repo)
        vector = await service.embed_signal(signal)
        matches = await service.find_similar_posts(vector, threshold=0.8, limit=5)
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        signals: SignalRepository,
        posts: PostRepository,
        model: Optional[str] = None,
    ):
        self.client = client
        self.signals = signals
        self.posts = posts
        self.model = model or get_settings().embedding_model

    async def embed_text(self, text: str) -> List[float]:
        if self.client is None:
            raise LLMCriticalError("No embedding provider configured")

        text = text.replace("\n", " ").strip()
        if not text:
            raise ValueError("Cannot embed empty text")

        response = await run_with_retry(
            lambda: self.client.embeddings.create(model=self.model, input=text),
            operation="embedding",
        )
        return list(response.data[0].embedding)

    async def embed_signal(self, signal: FeedbackSignal) -> List[float]:
        """Embed summary + implicit need and store it on the signal."""
        vector = await self.embed_text(signal.embedding_text)
        await self.signals.set_embedding(signal.id, vector, self.model)
        signal.embedding = vector
        return vector

    async def embed_post(self, post: FeedbackPost) -> List[float]:
        vector = await self.embed_text(f"{post.title}\n{post.body}")
        await self.posts.set_embedding(post.id, vector)
        post.embedding = vector
        return vector

    async def find_similar_posts(
        self,
        vector: List[float],
        threshold: float,
        limit: int,
        exclude_post_id: Optional[str] = None,
    ) -> List[SimilarPost]:
        """
        Posts with similarity >= threshold, best first, at most `limit`.
        Merged posts and `exclude_post_id` never match.
        """
        candidates = [
            p for p in await self.posts.find_search_candidates(exclude_post_id)
            if p.embedding and len(p.embedding) == len(vector)
        ]
        if not candidates:
            return []

        scores = cosine_similarities(vector, [p.embedding for p in candidates])
        ranked = sorted(
            (SimilarPost(post, float(score)) for post, score in zip(candidates, scores) if score >= threshold),
            key=lambda match: match.similarity,
            reverse=True,
        )

        logger.bind(exclude_post_id=exclude_post_id).debug(
            f"Similarity search: {len(ranked)} of {len(candidates)} posts above {threshold}"
        )
        return ranked[:limit]
