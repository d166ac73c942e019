"""
Rules API - FastAPI router for markup rule management.
"""
from fastapi import APIRouter, Depends, HTTPException

from ..engine.errors import MarkupError
from ..engine.markup_engine import MarkupEngine
from ..policy.fee_types import FeeTypeResolver
from ..rules.compile_rules import rule_from_dict, rule_to_dict
from ..services.rules_service import RulesService
from .schemas import (
    RuleCreate,
    RuleDetailResponse,
    RuleResponse,
    RuleUpdate,
    SupersedeRequest,
    SupersedeResponse,
    TestRuleResponse,
    TransactionIn,
    ValidationResponse,
)
from .state import get_engine, get_resolver, get_rules_service

router = APIRouter(prefix="/api/rules", tags=["rules"])


def _response(rule) -> RuleResponse:
    data = rule_to_dict(rule)
    data['description'] = data['description'] or ""
    return RuleResponse(**data)


def _build_rule(rule_data: RuleCreate):
    try:
        return rule_from_dict(rule_data.rule_data())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# Endpoints

@router.get("", response_model=list[RuleResponse])
async def list_rules(include_inactive: bool = True, service: RulesService = Depends(get_rules_service)):
    """List all markup rules."""
    return [_response(rule) for rule in service.list_rules(include_inactive=include_inactive)]


@router.get("/stats")
async def get_stats(service: RulesService = Depends(get_rules_service)):
    """Get rule statistics."""
    return service.get_stats()


@router.get("/{rule_id}", response_model=RuleDetailResponse)
async def get_rule(rule_id: str, service: RulesService = Depends(get_rules_service)):
    """Get a single rule with its change history."""
    rule = service.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return RuleDetailResponse(rule=_response(rule), history=service.get_history(rule_id))


@router.post("", response_model=RuleResponse)
async def create_rule(
    rule_data: RuleCreate,
    service: RulesService = Depends(get_rules_service),
    engine: MarkupEngine = Depends(get_engine),
):
    """Create a new markup rule."""
    rule = _build_rule(rule_data)

    try:
        created = service.create_rule(
            rule, changed_by=rule_data.changed_by, change_reason=rule_data.change_reason
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine.reload_data()
    return _response(created)


@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    updates: RuleUpdate,
    service: RulesService = Depends(get_rules_service),
    engine: MarkupEngine = Depends(get_engine),
):
    """Update an existing rule."""
    if not service.get_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")

    try:
        updated = service.update_rule(
            rule_id, updates.changes(),
            changed_by=updates.changed_by, change_reason=updates.change_reason,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine.reload_data()
    return _response(updated)


@router.delete("/{rule_id}", response_model=RuleResponse)
async def deactivate_rule(
    rule_id: str,
    service: RulesService = Depends(get_rules_service),
    engine: MarkupEngine = Depends(get_engine),
):
    """Deactivate a rule (rules are never hard-deleted)."""
    try:
        rule = service.deactivate_rule(rule_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    engine.reload_data()
    return _response(rule)


@router.post("/{rule_id}/supersede", response_model=SupersedeResponse)
async def supersede_rule(
    rule_id: str,
    request: SupersedeRequest,
    service: RulesService = Depends(get_rules_service),
    engine: MarkupEngine = Depends(get_engine),
):
    """Close a rule and insert its replacement from `effective_from`."""
    if not service.get_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")

    try:
        closed, created = service.supersede_rule(
            rule_id,
            request.changes.changes(),
            request.effective_from,
            new_rule_id=request.new_rule_id,
            changed_by=request.changed_by,
            change_reason=request.change_reason,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine.reload_data()
    return SupersedeResponse(closed=_response(closed), created=_response(created))


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: RuleCreate, service: RulesService = Depends(get_rules_service)):
    """Validate a rule without saving."""
    result = service.validate_rule(_build_rule(rule_data))
    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        conflicts=result.conflicts,
    )


@router.post("/compile")
async def compile_rules(
    service: RulesService = Depends(get_rules_service),
    engine: MarkupEngine = Depends(get_engine),
):
    """Force recompile of rules and reload engine."""
    success, output = service.compile_rules()
    if success:
        engine.reload_data()
    return {
        "success": success,
        "output": output,
        "catalog_hash": engine.catalog_hash,
    }


@router.post("/test", response_model=TestRuleResponse)
async def test_rules(
    transaction: TransactionIn,
    engine: MarkupEngine = Depends(get_engine),
    resolver: FeeTypeResolver = Depends(get_resolver),
):
    """Resolve one transaction against the live catalog."""
    try:
        line = engine.price(transaction.to_transaction(resolver))
    except MarkupError as e:
        raise HTTPException(status_code=422, detail=e.to_dict())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    match = next((t.description for t in line.trace if t.step == "Match"), "")
    return TestRuleResponse(
        rule_id=line.rule.rule_id,
        rule_name=line.rule.name,
        specificity=line.specificity,
        match_reason=match,
        markup_applied=str(line.markup_applied),
        billed_amount=str(line.billed_amount),
        markup_percentage=str(line.markup_percentage),
        trace=line.get_trace_text().split("\n"),
    )
