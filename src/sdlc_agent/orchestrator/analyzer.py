"""Heuristic structural scan of a checked-out repository."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from sdlc_agent.orchestrator.models import RepositoryAnalysis

logger = logging.getLogger(__name__)


class AnalysisError(RuntimeError):
    """Repository tree could not be scanned."""


@dataclass(slots=True, frozen=True)
class AnalyzerRules:
    """Static lookup tables driving the scan."""

    entry_point_files: tuple[str, ...] = (
        "main.go",
        "index.js",
        "index.ts",
        "app.js",
        "app.ts",
        "server.js",
        "server.ts",
        "index.html",
        "App.tsx",
        "App.jsx",
        "main.py",
        "app.py",
        "manage.py",
        "__main__.py",
    )
    key_directories: tuple[str, ...] = (
        "handlers",
        "controllers",
        "routes",
        "api",
        "services",
        "business",
        "logic",
        "models",
        "entities",
        "schemas",
        "repositories",
        "data",
        "db",
        "utils",
        "helpers",
        "lib",
        "middleware",
        "middlewares",
        "config",
        "configuration",
        "tests",
        "test",
        "__tests__",
    )
    config_files: tuple[str, ...] = (
        "go.mod",
        "package.json",
        "requirements.txt",
        "Pipfile",
        "pyproject.toml",
        "pom.xml",
        "build.gradle",
        "Cargo.toml",
        "composer.json",
        ".env.example",
        "config.yaml",
        "config.yml",
        "config.json",
        "Dockerfile",
        "docker-compose.yml",
    )
    language_extensions: dict[str, str] = field(
        default_factory=lambda: {
            ".go": "Go",
            ".js": "JavaScript",
            ".ts": "TypeScript",
            ".py": "Python",
            ".java": "Java",
            ".rb": "Ruby",
            ".php": "PHP",
            ".cs": "C#",
            ".rs": "Rust",
            ".cpp": "C++",
            ".c": "C",
        },
    )
    ignored_directories: frozenset[str] = frozenset(
        {"node_modules", "vendor", "venv", ".venv", "__pycache__"},
    )
    visible_dotfiles: frozenset[str] = frozenset({".env.example"})


DEFAULT_RULES = AnalyzerRules()

# (config file, project type, dependency manager); first match wins for the type.
_MANIFEST_TABLE: tuple[tuple[str, str, str], ...] = (
    ("go.mod", "Go Application", "Go Modules"),
    ("package.json", "Node.js Application", "npm/yarn"),
    ("requirements.txt", "Python Application", "pip"),
    ("Pipfile", "Python Application", "pipenv"),
    ("pyproject.toml", "Python Application", "pyproject"),
    ("pom.xml", "Java Application", "Maven"),
    ("build.gradle", "Java Application", "Gradle"),
    ("Cargo.toml", "Rust Application", "Cargo"),
)


class RepositoryAnalyzer:
    """Walks a repository tree and derives language/architecture hints."""

    def __init__(self, rules: AnalyzerRules = DEFAULT_RULES) -> None:
        self.rules = rules
        self._entry_points = set(rules.entry_point_files)
        self._config_files = set(rules.config_files)
        self._key_directories = {name.lower() for name in rules.key_directories}

    def analyze(self, repo_path: Path) -> RepositoryAnalysis:
        if not repo_path.is_dir():
            raise AnalysisError(f"Repository path is not a directory: {repo_path}")

        analysis = RepositoryAnalysis()
        try:
            self._walk(repo_path, analysis)
        except OSError as error:
            raise AnalysisError(f"Failed to scan repository {repo_path}: {error}") from error

        analysis.project_type = _detect_project_type(analysis)
        analysis.dependency_managers = _detect_dependency_managers(analysis)
        analysis.patterns = _detect_patterns(analysis)

        logger.info(
            "Repository analysis complete entry_points=%d key_dirs=%d config_files=%d "
            "languages=%s project_type=%s",
            len(analysis.entry_points),
            len(analysis.key_directories),
            len(analysis.config_files),
            ",".join(analysis.languages) or "-",
            analysis.project_type,
        )
        return analysis

    def _walk(self, repo_path: Path, analysis: RepositoryAnalysis) -> None:
        def _raise(error: OSError) -> None:
            raise error

        for current, dirnames, filenames in os.walk(repo_path, onerror=_raise):
            dirnames[:] = sorted(name for name in dirnames if self._keep_directory(name))
            current_path = Path(current)

            for dirname in dirnames:
                if dirname.lower() in self._key_directories:
                    analysis.key_directories.append(_relative(current_path / dirname, repo_path))

            for filename in sorted(filenames):
                if filename.startswith(".") and filename not in self.rules.visible_dotfiles:
                    continue
                relative = _relative(current_path / filename, repo_path)
                if filename in self._entry_points:
                    analysis.entry_points.append(relative)
                if filename in self._config_files:
                    analysis.config_files.append(relative)
                language = self.rules.language_extensions.get(Path(filename).suffix)
                if language is not None and language not in analysis.languages:
                    analysis.languages.append(language)

    def _keep_directory(self, name: str) -> bool:
        if name.startswith("."):
            return False
        return name not in self.rules.ignored_directories


def _relative(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def _detect_project_type(analysis: RepositoryAnalysis) -> str:
    for config_file in analysis.config_files:
        name = Path(config_file).name
        for manifest, project_type, _ in _MANIFEST_TABLE:
            if name == manifest:
                return project_type
    if analysis.languages:
        return f"{analysis.languages[0]} Application"
    return "Unknown"


def _detect_dependency_managers(analysis: RepositoryAnalysis) -> list[str]:
    managers: list[str] = []
    for config_file in analysis.config_files:
        name = Path(config_file).name
        for manifest, _, manager in _MANIFEST_TABLE:
            if name == manifest and manager not in managers:
                managers.append(manager)
    return managers


def _detect_patterns(analysis: RepositoryAnalysis) -> dict[str, str]:
    patterns: dict[str, str] = {}
    has_handlers = _contains_any(analysis.key_directories, ("handlers", "controllers", "routes"))
    has_services = _contains_any(analysis.key_directories, ("services", "business"))
    has_models = _contains_any(analysis.key_directories, ("models", "entities"))
    has_repositories = _contains_any(analysis.key_directories, ("repositories", "data"))

    if has_handlers and has_services and has_models and has_repositories:
        patterns["architecture"] = (
            "Clean Architecture (Handlers -> Services -> Repositories -> Models)"
        )
    elif has_handlers and has_services:
        patterns["architecture"] = "Layered Architecture"
    elif has_handlers:
        patterns["architecture"] = "MVC-like"

    if _contains_any(analysis.key_directories, ("api", "routes", "handlers")):
        patterns["api_style"] = "RESTful API"
    return patterns


def _contains_any(directories: list[str], needles: tuple[str, ...]) -> bool:
    for directory in directories:
        lowered = directory.lower()
        if any(needle in lowered for needle in needles):
            return True
    return False
