"""Shared fixtures for integration tests."""

from pathlib import Path

import pytest

from context_engine.config import Config
from context_engine.embedding.gateway import reset_fallback_warning
from context_engine.engine import ContextEngine
from context_engine.search.cross_encoder import CrossEncoder

MATH_TS = """export function add(a: number, b: number): number {
  return a + b;
}

export function subtract(a: number, b: number): number {
  return a - b;
}
"""

README_MD = "# Math\n\nThis project has an add function that adds numbers. Use the add function for addition.\n"

UTIL_PY = '''def format_total(values):
    """Format the sum of values."""
    return f"total={sum(values)}"
'''


def write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture(autouse=True)
def rearm_fallback_warning():
    reset_fallback_warning()
    yield
    reset_fallback_warning()


@pytest.fixture
def config():
    """Offline configuration: lexical embeddings, no background worker."""
    cfg = Config()
    cfg.embedding.provider = "lexical"
    cfg.indexing.background_indexing = False
    return cfg


@pytest.fixture
def workspace(tmp_path):
    write(tmp_path, "src/math.ts", MATH_TS)
    write(tmp_path, "src/util.py", UTIL_PY)
    write(tmp_path, "README.md", README_MD)
    return tmp_path


@pytest.fixture
def make_engine(config):
    """Factory for engines that never touch the network."""
    engines = []

    def factory(root, cfg=None, **kwargs):
        kwargs.setdefault("environ", {})
        kwargs.setdefault("cross_encoder", CrossEncoder(environ={}))
        engine = ContextEngine(root, config=cfg or config, **kwargs)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.close()
