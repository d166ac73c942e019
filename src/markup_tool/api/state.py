"""
Shared API state - the live engine and rules service.

Routes receive these through FastAPI dependencies so they can be overridden.
"""
import logging
from typing import Optional

from ..config.settings import get_settings
from ..engine.markup_engine import MarkupEngine
from ..policy.fee_types import FeeTypeResolver
from ..rules.compile_rules import load_compiled_rules
from ..services.rules_service import RulesService

logger = logging.getLogger(__name__)

_engine: Optional[MarkupEngine] = None
_rules_service: Optional[RulesService] = None
_resolver: Optional[FeeTypeResolver] = None


def _load_engine() -> MarkupEngine:
    settings = get_settings()
    path = settings.compiled_rules
    if not path.exists():
        logger.warning("No compiled rules at %s; starting with an empty catalog", path)
        return MarkupEngine([], source=path)
    return MarkupEngine(load_compiled_rules(path), source=path)


def get_engine() -> MarkupEngine:
    """Get the live engine, loading it on first use."""
    global _engine
    if _engine is None:
        _engine = _load_engine()
    return _engine


def get_rules_service() -> RulesService:
    global _rules_service
    if _rules_service is None:
        settings = get_settings()
        _rules_service = RulesService(
            rules_csv_path=settings.rules_csv,
            compiled_rules_path=settings.compiled_rules,
            history_path=settings.rule_history,
        )
    return _rules_service


def get_resolver() -> FeeTypeResolver:
    global _resolver
    if _resolver is None:
        _resolver = FeeTypeResolver()
    return _resolver
