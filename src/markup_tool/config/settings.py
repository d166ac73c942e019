"""
Centralized settings and path configuration for the markup tool.
"""
import logging
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    env_root = os.environ.get('MARKUP_TOOL_ROOT')
    if env_root:
        return Path(env_root).resolve()

    # Walk up from this file to find the project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path

    # Rule files
    rules_csv: Path
    compiled_rules: Path
    rule_history: Path

    # Transaction input and preflight output
    transactions_csv: Path
    preflight_report: Path

    log_level: str = 'INFO'
    max_workers: int = 1

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()
        rules_dir = root / 'src' / 'markup_tool' / 'rules'
        data_dir = root / 'src' / 'markup_tool' / 'data'

        try:
            max_workers = int(os.environ.get('MARKUP_TOOL_MAX_WORKERS', '1'))
        except ValueError:
            max_workers = 1

        return cls(
            project_root=root,
            rules_csv=rules_dir / 'rules.csv',
            compiled_rules=rules_dir / 'compiled_rules.json',
            rule_history=rules_dir / 'rule_history.jsonl',
            transactions_csv=data_dir / 'transactions.csv',
            preflight_report=data_dir / 'outputs' / 'preflight_report.json',
            log_level=os.environ.get('MARKUP_TOOL_LOG_LEVEL', 'INFO').upper(),
            max_workers=max(1, max_workers),
        )


def configure_logging(level: Optional[str] = None):
    """Install a basic logging configuration for scripts and the API."""
    level = level or get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
