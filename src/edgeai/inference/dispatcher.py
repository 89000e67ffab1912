"""
Routes inference calls through the resource lock scheduler.

GPU-bound and CPU-bound engines are not reentrant and must never run two
operations at once. The dispatcher binds each engine to the resource kind it
occupies and wraps every call in ``scheduler.with_lock`` for that resource.
Engines reached over the network are bound to no resource and run unlocked.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from edgeai.concurrency.resource_scheduler import ResourceKind, ResourceLockScheduler
from edgeai.config.logging_config import get_logger

log = get_logger(__name__)


class TextGenerator(Protocol):
    """An engine that can complete a prompt."""

    async def generate_text(self, prompt: str, **options: Any) -> str:
        ...


class EmbeddingGenerator(Protocol):
    """An engine that can embed a piece of text."""

    async def generate_embedding(self, text: str) -> list[float]:
        ...


@dataclass
class EngineBinding:
    engine: Any
    # None for engines that do not occupy a local resource (remote APIs)
    resource: str | None = None


class InferenceDispatcher:
    """
    Serializes engine access per resource.

    Example:
        scheduler = ResourceLockScheduler()
        dispatcher = InferenceDispatcher.for_backend(
            "webllm-gpu", scheduler, text_engine=webllm, embedding_engine=wllama
        )
        vector = await dispatcher.generate_embedding("hello")
    """

    def __init__(
        self,
        scheduler: ResourceLockScheduler,
        text: EngineBinding | None = None,
        embedding: EngineBinding | None = None,
        temperature: float = 0.7,
        max_tokens: int = 512,
    ) -> None:
        self.scheduler = scheduler
        self.text = text
        self.embedding = embedding
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def for_backend(
        cls,
        backend: str,
        scheduler: ResourceLockScheduler,
        text_engine: Any = None,
        embedding_engine: Any = None,
        **kwargs: Any,
    ) -> "InferenceDispatcher":
        """
        Build a dispatcher for a named backend.

        - ``webllm-gpu``: text generation on the GPU, embeddings on the CPU
        - ``wllama-cpu``: both on the CPU
        - ``huggingface``: remote API, no local locking
        """
        if backend == "webllm-gpu":
            text_resource, embedding_resource = ResourceKind.GPU, ResourceKind.CPU
        elif backend == "wllama-cpu":
            text_resource, embedding_resource = ResourceKind.CPU, ResourceKind.CPU
        elif backend == "huggingface":
            text_resource, embedding_resource = None, None
        else:
            raise ValueError(f"Unknown inference backend: {backend}")

        return cls(
            scheduler,
            text=EngineBinding(text_engine, text_resource) if text_engine is not None else None,
            embedding=(
                EngineBinding(embedding_engine, embedding_resource) if embedding_engine is not None else None
            ),
            **kwargs,
        )

    async def generate_text(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **options: Any,
    ) -> str:
        if self.text is None:
            raise RuntimeError("No AI backend available for text generation")
        engine: TextGenerator = self.text.engine
        options = {
            **options,
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }

        if self.text.resource is None:
            return await engine.generate_text(prompt, **options)
        return await self.scheduler.with_lock(
            self.text.resource, lambda: engine.generate_text(prompt, **options)
        )

    async def generate_embedding(self, text: str) -> list[float]:
        if self.embedding is None:
            raise RuntimeError("No AI backend available for embeddings")
        engine: EmbeddingGenerator = self.embedding.engine

        if self.embedding.resource is None:
            return await engine.generate_embedding(text)
        return await self.scheduler.with_lock(self.embedding.resource, lambda: engine.generate_embedding(text))

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts`` in order, holding the resource once for the whole batch."""
        if self.embedding is None:
            raise RuntimeError("No AI backend available for embeddings")
        engine: EmbeddingGenerator = self.embedding.engine

        if self.embedding.resource is None:
            return [await engine.generate_embedding(text) for text in texts]

        log.debug(f"Embedding batch of {len(texts)} on {self.embedding.resource}")
        async with self.scheduler.hold(self.embedding.resource):
            return [await engine.generate_embedding(text) for text in texts]
