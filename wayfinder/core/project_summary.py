"""Static overview of the target repo, built once per run for the Planner."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from wayfinder.core.logging import get_logger
from wayfinder.tools.filesystem import list_files
from wayfinder.tools.git import hotspots

logger = get_logger("core.project_summary")

LANGUAGE_EXTENSIONS = {
    ".ts": "typescript", ".tsx": "typescript",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".cs": "csharp",
    ".swift": "swift",
    ".vue": "vue",
}

CONFIG_FILES = {
    "package.json", "tsconfig.json", "pyproject.toml", "setup.py", "requirements.txt",
    "go.mod", "cargo.toml", "pom.xml", "package.swift", "dockerfile", "makefile",
}


def _is_test_file(path: str) -> bool:
    lower = path.lower()
    name = lower.rsplit("/", 1)[-1]
    return (
        "/tests/" in f"/{lower}" or "/test/" in f"/{lower}" or "__tests__" in lower
        or name.startswith("test_") or ".test." in name or ".spec." in name or name.endswith("_test.go")
    )


def build_project_summary(root_dir: str | Path, include_hotspots: bool = True, max_files: int = 2000) -> str:
    """Languages, config files, test presence and git hotspots as a short markdown block."""
    files = list_files(root_dir, limit=max_files)
    languages = Counter(
        LANGUAGE_EXTENSIONS[Path(f).suffix.lower()]
        for f in files
        if Path(f).suffix.lower() in LANGUAGE_EXTENSIONS
    )
    configs = [f for f in files if Path(f).name.lower() in CONFIG_FILES]
    has_tests = any(_is_test_file(f) for f in files)

    lines = [f"Files: {len(files)}{'+' if len(files) >= max_files else ''}"]
    if languages:
        lines.append("Languages: " + ", ".join(f"{lang} ({n})" for lang, n in languages.most_common()))
    if configs:
        lines.append("Config files: " + ", ".join(configs[:15]))
    lines.append(f"Has tests: {'yes' if has_tests else 'no'}")

    if include_hotspots:
        spots = hotspots(root_dir, limit=5)
        if spots:
            lines.append("Git hotspots: " + ", ".join(f"{path} ({n})" for path, n in spots))

    summary = "\n".join(lines)
    logger.info("Project summary built (%d files, %d languages)", len(files), len(languages))
    return summary
