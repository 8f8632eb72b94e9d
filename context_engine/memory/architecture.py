"""Detect layered-architecture conventions from file paths and import edges."""

import logging
from collections.abc import Iterable
from pathlib import Path

from ..parser.graph import ImportEdge
from .behavior import BehaviorMemory
from .store import ArchitecturalPattern, utcnow_iso

logger = logging.getLogger(__name__)


class ArchitectureMemory:
    """Recomputes the workspace's architectural patterns on every pass.

    Patterns are overwritten rather than merged with earlier passes, so the
    stored list always describes the current file set.
    """

    def __init__(self, root: Path, behavior: BehaviorMemory):
        self.root = Path(root)
        self.behavior = behavior

    def analyze(
        self, files: Iterable[str], edges: Iterable[ImportEdge] | None = None
    ) -> list[ArchitecturalPattern]:
        rel_files = [self.behavior.normalize(f) for f in files]
        graph = [
            (self.behavior.normalize(e.source), self.behavior.normalize(e.target)) for e in (edges or [])
        ]
        now = utcnow_iso()
        patterns: list[ArchitecturalPattern] = []

        def has_edge(source_hint: str, target_hint: str) -> bool:
            return any(source_hint in s and target_hint in t for s, t in graph)

        controllers = [f for f in rel_files if "controller" in f]
        models = [f for f in rel_files if "model" in f]
        views = [f for f in rel_files if "view" in f]
        if controllers and models:
            confidence = min(1.0, (len(controllers) + len(models) + len(views)) / 18)
            if has_edge("controller", "view"):
                confidence = min(1.0, confidence + 0.2)
            patterns.append(
                ArchitecturalPattern(
                    name="MVC",
                    description="Controllers coordinate models" + (" and views" if views else ""),
                    files=controllers + models + views,
                    confidence=confidence,
                    tags=["controllers", "models"] + (["views"] if views else []),
                    detected_at=now,
                )
            )

        services = [f for f in rel_files if "service" in f]
        repositories = [f for f in rel_files if "repository" in f or "repo/" in f]
        if services:
            confidence = min(1.0, len(services) / 12 + (0.2 if repositories else 0.0))
            if has_edge("controller", "service"):
                confidence = min(1.0, confidence + 0.2)
            patterns.append(
                ArchitecturalPattern(
                    name="Service Layer",
                    description="Service layer detected via dedicated service files"
                    + (" with repositories" if repositories else ""),
                    files=services + repositories,
                    confidence=confidence,
                    tags=["services"] + (["repositories"] if repositories else []),
                    detected_at=now,
                )
            )

        simple_rules = [
            (
                "API Handlers",
                "HTTP/API handler files detected",
                lambda f: "/api/" in f or f.startswith("api/") or "handler" in f,
                16,
                0.2,
                ["api", "handlers"],
            ),
            (
                "Monorepo Packages",
                "Multiple package modules detected (monorepo layout)",
                lambda f: f.startswith("packages/"),
                40,
                0.3,
                ["monorepo", "packages"],
            ),
            (
                "Domain Modules",
                "Domain-driven structure with use cases/domains",
                lambda f: "use-case" in f or "domain" in f,
                20,
                0.2,
                ["domain", "use-case"],
            ),
            (
                "Component Library",
                "UI components/hooks detected",
                lambda f: "component" in f or "hooks/" in f,
                25,
                0.2,
                ["components", "ui"],
            ),
        ]
        for name, description, matches, scale, base, tags in simple_rules:
            members = [f for f in rel_files if matches(f)]
            if members:
                patterns.append(
                    ArchitecturalPattern(
                        name=name,
                        description=description,
                        files=members,
                        confidence=min(1.0, len(members) / scale + base),
                        tags=tags,
                        detected_at=now,
                    )
                )

        self.behavior.update_architecture(patterns)
        logger.info(f"Detected {len(patterns)} architectural patterns across {len(rel_files)} files")
        return patterns
