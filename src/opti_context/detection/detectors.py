"""Evidence detectors for project structure and prompt text."""

from __future__ import annotations

import fnmatch
import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from opti_context.config import DetectionConfig
from opti_context.types import EvidenceItem, EvidenceSource, ProductId, SessionSnapshot

LOGGER = logging.getLogger(__name__)

_PACKAGE_REFERENCE = re.compile(r"<PackageReference\s+Include=\"([^\"]+)\"", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ProductPatterns:
    files: tuple[str, ...]
    directories: tuple[str, ...]
    dependencies: tuple[str, ...]
    content: tuple[str, ...]


DETECTION_PATTERNS: dict[ProductId, ProductPatterns] = {
    ProductId.CONFIGURED_COMMERCE: ProductPatterns(
        files=("*Handler.cs", "*Pipeline.cs", "*.Blueprint.tsx", "Startup.cs"),
        directories=("Extensions", "FrontEnd", "blueprints"),
        dependencies=("insite-*", "InsiteCommerce*", "@insite/*"),
        content=("HandlerChainManager", "IPipelineAssemblyOptions", "IHandlerFactory"),
    ),
    ProductId.COMMERCE_CONNECT: ProductPatterns(
        files=("*Connector.cs", "*Sync.cs", "Commerce.Connect.*"),
        directories=("Connectors", "Commerce.Connect"),
        dependencies=("Optimizely.Commerce.Connect*",),
        content=("ICommerceConnector", "SynchronizationService"),
    ),
    ProductId.CMS_PAAS: ProductPatterns(
        files=("*.ascx", "*Controller.cs", "Startup.cs", "web.config"),
        directories=("modules", "App_Data", "Views", "Controllers"),
        dependencies=("episerver*", "optimizely*cms*", "EPiServer*"),
        content=("ContentType", "PropertyFor", "EPiServer", "IContentRepository"),
    ),
    ProductId.CMS_SAAS: ProductPatterns(
        files=("next.config.js", "gatsby-config.js"),
        directories=("components", "pages"),
        dependencies=("@optimizely/cms*", "@episerver/*", "optimizely-graph*"),
        content=("OptimizelyGraph", "ContentDelivery", "headless"),
    ),
    ProductId.CMP: ProductPatterns(
        files=("campaign-config.*", "marketing-*"),
        directories=("campaigns", "marketing"),
        dependencies=("@optimizely/marketing*", "optimizely-campaign*"),
        content=("CampaignManager", "MarketingAutomation"),
    ),
    ProductId.DXP: ProductPatterns(
        files=("personalization.*", "visitor-groups.*"),
        directories=("Personalization", "VisitorGroups"),
        dependencies=("optimizely-dxp*", "episerver-dxp*"),
        content=("VisitorGroup", "PersonalizationProvider", "RecommendationService"),
    ),
    ProductId.WEB_EXPERIMENTATION: ProductPatterns(
        files=("optimizely.js", "experiment-*", "*.experiment.*"),
        directories=("experiments",),
        dependencies=("@optimizely/optimizely-sdk", "optimizely-client-sdk"),
        content=("optimizely.createInstance", "isFeatureEnabled"),
    ),
    ProductId.FEATURE_EXPERIMENTATION: ProductPatterns(
        files=("feature-flags.*", "rollout.*", "datafile.*"),
        directories=("features", "flags", "rollouts"),
        dependencies=("@optimizely/sdk", "@optimizely/feature-experimentation"),
        content=("createUserContext", "OptimizelyUserContext", "decide(", "trackEvent"),
    ),
    ProductId.DATA_PLATFORM: ProductPatterns(
        files=("data-platform.*", "analytics.*", "tracking.*"),
        directories=("analytics", "tracking"),
        dependencies=("@optimizely/data-platform*", "optimizely-analytics*"),
        content=("DataPlatform", "EventTracker", "CustomerData"),
    ),
    ProductId.CONNECT_PLATFORM: ProductPatterns(
        files=("connect.*", "integration.*", "webhook.*"),
        directories=("integrations", "webhooks", "connect"),
        dependencies=("@optimizely/connect*", "optimizely-integration*"),
        content=("ConnectPlatform", "IntegrationService", "WebhookHandler"),
    ),
    ProductId.RECOMMENDATIONS: ProductPatterns(
        files=("recommendations.*", "recs.*"),
        directories=("recommendations", "recs"),
        dependencies=("@optimizely/recommendations*", "optimizely-recs*"),
        content=("RecommendationEngine", "ProductRecommendations"),
    ),
}


class EvidenceDetector(Protocol):
    """Minimal contract for structure-based detectors."""

    def detect(self, project_path: str | Path) -> list[EvidenceItem]:
        """Return evidence items; may raise when the project is unreadable."""


def _matches(name: str, pattern: str) -> bool:
    return fnmatch.fnmatchcase(name.lower(), pattern.lower())


class ProjectStructureDetector:
    """Collects product evidence from a project's files and dependencies."""

    def __init__(
        self,
        config: DetectionConfig | None = None,
        patterns: dict[ProductId, ProductPatterns] | None = None,
    ) -> None:
        self.config = config or DetectionConfig()
        self.patterns = patterns or DETECTION_PATTERNS

    def detect(self, project_path: str | Path) -> list[EvidenceItem]:
        root = Path(project_path)
        if not root.is_dir():
            raise FileNotFoundError(f"Project path does not exist: {project_path}")

        evidence: list[EvidenceItem] = []
        entries = sorted(root.iterdir(), key=lambda item: item.name)[: self.config.max_scan_entries]
        for entry in entries:
            if entry.is_dir():
                evidence.extend(self._match_names(entry.name, "directory"))
            else:
                evidence.extend(self._match_names(entry.name, "file"))

        evidence.extend(self._package_json_evidence(root / "package.json"))
        for project_file in (entry for entry in entries if entry.suffix.lower() == ".csproj"):
            evidence.extend(self._csproj_evidence(project_file))

        LOGGER.debug("Project detection found %d evidence items in %s", len(evidence), root)
        return evidence

    def _match_names(self, name: str, kind: str) -> list[EvidenceItem]:
        weight = self.config.directory_weight if kind == "directory" else self.config.file_weight
        found: list[EvidenceItem] = []
        for product, patterns in self.patterns.items():
            candidates = patterns.directories if kind == "directory" else patterns.files
            for pattern in candidates:
                if _matches(name, pattern):
                    found.append(
                        EvidenceItem(
                            source=EvidenceSource.PROJECT,
                            product=product,
                            weight=weight,
                            detail=f"{kind.capitalize()} {name} matches {product.value} pattern {pattern}",
                            kind=kind,
                        )
                    )
        return found

    def _dependency_evidence(self, names: Iterable[str], origin: str) -> list[EvidenceItem]:
        found: list[EvidenceItem] = []
        for name in names:
            for product, patterns in self.patterns.items():
                for pattern in patterns.dependencies:
                    if _matches(name, pattern):
                        found.append(
                            EvidenceItem(
                                source=EvidenceSource.PROJECT,
                                product=product,
                                weight=self.config.dependency_weight,
                                detail=f"Dependency {name} in {origin} matches {pattern}",
                                kind="dependency",
                            )
                        )
        return found

    def _package_json_evidence(self, path: Path) -> list[EvidenceItem]:
        if not path.is_file():
            return []
        try:
            manifest = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.debug("Skipping unreadable package.json at %s: %s", path, exc)
            return []
        if not isinstance(manifest, dict):
            return []

        names: list[str] = []
        for section in ("dependencies", "devDependencies", "peerDependencies"):
            deps = manifest.get(section)
            if isinstance(deps, dict):
                names.extend(str(name) for name in deps)
        return self._dependency_evidence(names, "package.json")

    def _csproj_evidence(self, path: Path) -> list[EvidenceItem]:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.debug("Skipping unreadable project file %s: %s", path, exc)
            return []
        return self._dependency_evidence(_PACKAGE_REFERENCE.findall(text), path.name)


class PromptEvidenceDetector:
    """Turns prompt text, analyzer hints and session history into evidence."""

    def __init__(
        self,
        config: DetectionConfig | None = None,
        patterns: dict[ProductId, ProductPatterns] | None = None,
    ) -> None:
        self.config = config or DetectionConfig()
        self.patterns = patterns or DETECTION_PATTERNS

    def detect(
        self,
        prompt: str,
        product_hints: Iterable[ProductId] = (),
        session: SessionSnapshot | None = None,
    ) -> list[EvidenceItem]:
        lowered = (prompt or "").lower()
        evidence: list[EvidenceItem] = []

        for product in product_hints:
            evidence.append(
                EvidenceItem(
                    source=EvidenceSource.PROMPT,
                    product=product,
                    weight=self.config.prompt_hint_weight,
                    detail=f"Prompt keywords suggest {product.value}",
                    kind="hint",
                )
            )

        for product, patterns in self.patterns.items():
            for term in patterns.content:
                if term.lower() in lowered:
                    evidence.append(
                        EvidenceItem(
                            source=EvidenceSource.PROMPT,
                            product=product,
                            weight=self.config.prompt_term_weight,
                            detail=f"Prompt mentions {term}",
                            kind="content",
                        )
                    )

        if not evidence and session is not None:
            for product in session.recent_products:
                evidence.append(
                    EvidenceItem(
                        source=EvidenceSource.PROMPT,
                        product=product,
                        weight=self.config.session_weight,
                        detail=f"Recently discussed {product.value}",
                        kind="session",
                    )
                )
        return evidence
