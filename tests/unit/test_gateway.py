"""Unit tests for the embedding gateway."""

import logging

import numpy as np
import pytest

from context_engine.config import ConfigurationError, EmbeddingConfig
from context_engine.embedding.gateway import EmbeddingGateway, hashed_embedding, reset_fallback_warning
from context_engine.embedding.providers import ProviderError


class FakeProvider:
    """Records calls and returns small deterministic vectors."""

    def __init__(self, name, fail=False, dims=3):
        self.name = name
        self.fail = fail
        self.dims = dims
        self.calls = []

    def embed(self, texts, model, input_type="document"):
        self.calls.append((list(texts), model, input_type))
        if self.fail:
            raise ProviderError(self.name, "unavailable")
        return [[float(len(t))] + [1.0] * (self.dims - 1) for t in texts]


@pytest.fixture(autouse=True)
def rearm_warning():
    reset_fallback_warning()
    yield
    reset_fallback_warning()


def gateway(provider="auto", **providers):
    return EmbeddingGateway(EmbeddingConfig(provider=provider, fallback_dimensions=16), environ={}, providers=providers)


class TestHashedEmbedding:
    """Tests for the deterministic fallback vectors."""

    def test_deterministic_and_normalized(self):
        """Test that equal text gives equal unit vectors."""
        a = hashed_embedding("refresh the auth token", 64)
        b = hashed_embedding("Refresh the AUTH token", 64)

        assert a == b
        assert len(a) == 64
        assert np.linalg.norm(a) == pytest.approx(1.0)

    def test_empty_text(self):
        """Test that text without tokens is the zero vector."""
        assert hashed_embedding("  ...  ", 8) == [0.0] * 8


class TestProviderChain:
    """Tests for content-aware provider ordering."""

    def test_code_prefers_voyage(self):
        """Test that code goes to Voyage first."""
        voyage, openai = FakeProvider("voyage"), FakeProvider("openai")
        result = gateway(voyage=voyage, openai=openai).embed(["def f(): pass"], content_type="code")

        assert result.provider == "voyage"
        assert result.model == "voyage-code-3"
        assert len(voyage.calls) == 1
        assert openai.calls == []

    def test_docs_prefer_openai(self):
        """Test that documentation goes to OpenAI first."""
        voyage, openai = FakeProvider("voyage"), FakeProvider("openai")
        result = gateway(voyage=voyage, openai=openai).embed(["guide"], content_type="docs")
        assert result.provider == "openai"

    def test_content_type_from_path(self):
        """Test that a file path refines the general content type."""
        voyage, openai = FakeProvider("voyage"), FakeProvider("openai")
        result = gateway(voyage=voyage, openai=openai).embed(["x = 1"], file_path="a.py")
        assert result.provider == "voyage"

    def test_missing_credentials_skipped(self):
        """Test that providers without credentials are left out of auto chains."""
        gw = EmbeddingGateway(EmbeddingConfig(), environ={"OPENAI_API_KEY": "k"})
        assert gw.provider_chain("code") == ["openai", "ollama"]
        assert gw.provider_chain("docs") == ["openai", "ollama"]

    def test_lexical_mode(self):
        """Test that lexical mode never calls a provider."""
        voyage = FakeProvider("voyage")
        result = gateway("lexical", voyage=voyage).embed(["a", "b"])

        assert result.provider == "lexical"
        assert result.degraded
        assert result.dims == 16
        assert voyage.calls == []


class TestFallback:
    """Tests for failure handling."""

    def test_next_provider_on_failure(self):
        """Test that a failing provider hands over to the next one."""
        voyage, openai = FakeProvider("voyage", fail=True), FakeProvider("openai")
        result = gateway(voyage=voyage, openai=openai).embed(["x"], content_type="code")

        assert result.provider == "openai"
        assert [f.provider for f in result.failures] == ["voyage"]

    def test_all_fail_uses_lexical_and_logs_once(self, caplog):
        """Test that exhausting the chain degrades to hashed vectors with a single warning."""
        voyage = FakeProvider("voyage", fail=True)
        gw = gateway(voyage=voyage)

        with caplog.at_level(logging.WARNING, logger="context_engine.embedding.gateway"):
            first = gw.embed(["x"], content_type="code")
            second = gw.embed(["y"], content_type="code")

        assert first.provider == second.provider == "lexical"
        assert first.vectors == [hashed_embedding("x", 16)]
        assert len([r for r in caplog.records if "lexical embeddings" in r.message]) == 1

    def test_wrong_vector_count_rejected(self):
        """Test that a provider returning too few vectors counts as failed."""

        class ShortProvider(FakeProvider):
            def embed(self, texts, model, input_type="document"):
                return [[1.0, 2.0]]

        result = gateway(voyage=ShortProvider("voyage")).embed(["a", "b"], content_type="code")
        assert result.provider == "lexical"
        assert "returned 1 vectors" in result.failures[0].error

    def test_forced_provider_without_credential(self):
        """Test that a forced provider lacking its key raises ConfigurationError."""
        gw = EmbeddingGateway(EmbeddingConfig(provider="openai"), environ={})
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            gw.embed(["a"])
        gw.close()

    def test_unknown_forced_provider(self):
        """Test that an unknown provider name raises ConfigurationError."""
        gw = EmbeddingGateway(EmbeddingConfig(provider="bogus"), environ={})
        with pytest.raises(ConfigurationError, match="Unknown embedding provider"):
            gw.embed(["a"])
        gw.close()


class TestGatewayHelpers:
    """Tests for convenience entry points."""

    def test_embed_query_uses_query_input_type(self):
        """Test that queries are embedded with input_type=query."""
        voyage = FakeProvider("voyage")
        gateway(voyage=voyage).embed_query("which function parses tokens")
        assert voyage.calls[0][2] == "query"

    def test_embed_batch_and_empty(self):
        """Test vector-only batches and the empty input."""
        gw = gateway("lexical")
        assert len(gw.embed_batch(["a", "b", "c"])) == 3
        assert gw.embed([]).vectors == []

    def test_model_namespace(self):
        """Test that lexical mode gets its own cache namespace."""
        assert gateway("lexical").model_namespace == "lexical-16"
        assert gateway().model_namespace == "nomic-embed-text"
