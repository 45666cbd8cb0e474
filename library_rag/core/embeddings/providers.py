"""
Embedding gateway for the library RAG pipeline.

Turns chunk and query text into vectors through a LangChain ``Embeddings``
model, in single and batch modes.
"""

from typing import List, Optional
from abc import ABC, abstractmethod
from langchain_core.embeddings import Embeddings, DeterministicFakeEmbedding
from langchain_openai import OpenAIEmbeddings
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import EmbeddingError, APIKeyError, ConfigurationError
from library_rag.utils.decorators import timing_decorator
from library_rag.config.settings import RAGConfig, EmbeddingConfig

logger = get_logger(__name__)


class EmbeddingGateway(ABC):
    """Abstract base class for embedding gateways."""

    @abstractmethod
    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a list of texts.

        Args:
            texts: List of texts to embed

        Returns:
            One embedding vector per input, in input order
        """
        pass

    def get_stats(self) -> dict:
        return {}


class LangChainEmbeddingGateway(EmbeddingGateway):
    """Embedding gateway backed by any LangChain embeddings model."""

    def __init__(
        self,
        embeddings: Embeddings,
        model_name: str = "unknown",
        max_input_chars: int = 8000
    ):
        """
        Initialize embedding gateway.

        Args:
            embeddings: LangChain embeddings model
            model_name: Model name, for logging and stats
            max_input_chars: Inputs longer than this are truncated
        """
        self.embeddings = embeddings
        self.model_name = model_name
        self.max_input_chars = max_input_chars

        logger.info(f"🤖 Initialized embedding gateway: {self.model_name}")

    def _prepare(self, text: str) -> str:
        if len(text) > self.max_input_chars:
            logger.debug(f"✂️ Truncating embedding input from {len(text)} to {self.max_input_chars} chars")
            return text[:self.max_input_chars]
        return text

    @timing_decorator
    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single query text.

        Raises:
            EmbeddingError: If the provider call fails
        """
        try:
            logger.info(f"🔍 Embedding query: {text[:50]}...")
            return await self.embeddings.aembed_query(self._prepare(text))

        except Exception as e:
            error_msg = f"Failed to embed query: {str(e)}"
            logger.error(error_msg)
            raise EmbeddingError(error_msg) from e

    @timing_decorator
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of chunk texts.

        Raises:
            EmbeddingError: If the provider call fails or returns the wrong number of vectors
        """
        if not texts:
            return []

        try:
            logger.info(f"🔤 Embedding {len(texts)} texts")
            vectors = await self.embeddings.aembed_documents([self._prepare(t) for t in texts])

        except Exception as e:
            error_msg = f"Failed to embed documents: {str(e)}"
            logger.error(error_msg)
            raise EmbeddingError(error_msg) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    def get_stats(self) -> dict:
        return {
            "model_name": self.model_name,
            "max_input_chars": self.max_input_chars
        }


def _build_embeddings(config: RAGConfig) -> Embeddings:
    embedding_config: EmbeddingConfig = config.embedding
    provider = embedding_config.provider

    if provider == "openai":
        if not config.openai_api_key:
            raise APIKeyError("OpenAI API key is required")
        return OpenAIEmbeddings(
            model=embedding_config.model_name,
            api_key=config.openai_api_key
        )

    if provider == "google":
        if not config.google_api_key:
            raise APIKeyError("Google API key is required")
        return GoogleGenerativeAIEmbeddings(
            model=embedding_config.model_name,
            google_api_key=config.google_api_key
        )

    if provider == "fake":
        return DeterministicFakeEmbedding(size=embedding_config.dimensions)

    raise ConfigurationError(f"Unsupported embedding provider: {provider}")


def create_embedding_gateway(
    config: RAGConfig,
    embeddings: Optional[Embeddings] = None
) -> EmbeddingGateway:
    """
    Create the embedding gateway for the configured provider.

    Args:
        config: RAG configuration
        embeddings: Prebuilt LangChain embeddings, overriding the provider setting

    Returns:
        Embedding gateway instance

    Raises:
        APIKeyError: If the provider's API key is missing
        ConfigurationError: If the provider is not supported
    """
    embeddings = embeddings or _build_embeddings(config)
    return LangChainEmbeddingGateway(
        embeddings,
        model_name=config.embedding.model_name,
        max_input_chars=config.embedding.max_input_chars
    )
