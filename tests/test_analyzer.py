from __future__ import annotations

from pathlib import Path

import allure
import pytest

from sdlc_agent.orchestrator.analyzer import AnalysisError, AnalyzerRules, RepositoryAnalyzer

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Repository Analysis"),
]


def _write(root: Path, relative: str, content: str = "") -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, "utf-8")


@pytest.fixture()
def go_service(tmp_path: Path) -> Path:
    for relative in (
        "go.mod",
        "main.go",
        "handlers/health.go",
        "services/health.go",
        "models/status.go",
        "repositories/status.go",
        ".env.example",
        ".github/workflows/ci.yml",
        "vendor/lib/lib.go",
        "node_modules/pkg/index.js",
        "web/widget.ts",
    ):
        _write(tmp_path, relative)
    return tmp_path


def test_go_service_is_detected_with_clean_architecture(go_service: Path) -> None:
    analysis = RepositoryAnalyzer().analyze(go_service)

    assert analysis.project_type == "Go Application"
    assert analysis.dependency_managers == ["Go Modules"]
    assert analysis.entry_points == ["main.go"]
    assert analysis.config_files == [".env.example", "go.mod"]
    assert analysis.key_directories == ["handlers", "models", "repositories", "services"]
    assert analysis.languages == ["Go", "TypeScript"]
    assert analysis.patterns == {
        "architecture": "Clean Architecture (Handlers -> Services -> Repositories -> Models)",
        "api_style": "RESTful API",
    }


def test_hidden_and_ignored_directories_are_skipped(go_service: Path) -> None:
    analysis = RepositoryAnalyzer().analyze(go_service)

    assert not any(path.startswith((".github", "vendor", "node_modules")) for path in analysis.entry_points)
    assert "JavaScript" not in analysis.languages


def test_analysis_is_idempotent(go_service: Path) -> None:
    analyzer = RepositoryAnalyzer()

    assert analyzer.analyze(go_service).to_dict() == analyzer.analyze(go_service).to_dict()


def test_layered_and_mvc_patterns(tmp_path: Path) -> None:
    layered = tmp_path / "layered"
    _write(layered, "controllers/user.py")
    _write(layered, "services/user.py")
    mvc = tmp_path / "mvc"
    _write(mvc, "routes/index.js")

    analyzer = RepositoryAnalyzer()

    assert analyzer.analyze(layered).patterns["architecture"] == "Layered Architecture"
    assert analyzer.analyze(mvc).patterns == {"architecture": "MVC-like", "api_style": "RESTful API"}


def test_project_type_falls_back_to_first_language(tmp_path: Path) -> None:
    _write(tmp_path, "src/lib.rb")

    analysis = RepositoryAnalyzer().analyze(tmp_path)

    assert analysis.project_type == "Ruby Application"
    assert analysis.dependency_managers == []


def test_empty_repository_is_unknown(tmp_path: Path) -> None:
    analysis = RepositoryAnalyzer().analyze(tmp_path)

    assert analysis.project_type == "Unknown"
    assert analysis.patterns == {}


def test_custom_rules_change_detection(tmp_path: Path) -> None:
    _write(tmp_path, "cmd/run.go")
    _write(tmp_path, "internal/store.go")
    rules = AnalyzerRules(entry_point_files=("run.go",), key_directories=("internal",))

    analysis = RepositoryAnalyzer(rules).analyze(tmp_path)

    assert analysis.entry_points == ["cmd/run.go"]
    assert analysis.key_directories == ["internal"]


def test_missing_path_raises_analysis_error(tmp_path: Path) -> None:
    with pytest.raises(AnalysisError, match="not a directory"):
        RepositoryAnalyzer().analyze(tmp_path / "missing")
