from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from markup_tool import __version__
from markup_tool.api.rules_api import router as rules_router
from markup_tool.api.schemas import PriceRequest
from markup_tool.api.state import get_engine, get_resolver
from markup_tool.config.settings import configure_logging, get_settings
from markup_tool.engine.markup_engine import MarkupEngine
from markup_tool.policy.fee_types import FeeTypeResolver
from markup_tool.services.preflight_service import run_preflight

configure_logging()

app = FastAPI(
    title="Markup Tool API",
    description="Markup rule resolution for invoice generation",
    version=__version__,
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include rules management API
app.include_router(rules_router)


@app.get("/")
async def root():
    return {"status": "online", "message": "Markup Tool API Active"}


@app.post("/price")
async def price(
    req: PriceRequest,
    engine: MarkupEngine = Depends(get_engine),
    resolver: FeeTypeResolver = Depends(get_resolver),
):
    transactions = [tx.to_transaction(resolver) for tx in req.transactions]
    batch = engine.price_transactions(
        transactions, as_of_date=req.as_of_date, max_workers=get_settings().max_workers
    )
    result = batch.to_dict()
    if req.include_trace:
        for data, line in zip(result["lines"], batch.lines):
            data["trace"] = line.get_trace_text().split("\n")
    return result


@app.post("/preflight")
async def preflight(
    req: PriceRequest,
    engine: MarkupEngine = Depends(get_engine),
    resolver: FeeTypeResolver = Depends(get_resolver),
):
    transactions = [tx.to_transaction(resolver) for tx in req.transactions]
    return run_preflight(
        engine, transactions, as_of_date=req.as_of_date, max_workers=get_settings().max_workers
    )


@app.get("/system/status")
async def get_status(engine: MarkupEngine = Depends(get_engine)):
    source: Optional[str] = str(engine.source) if engine.source else None
    return {
        "engine_active": True,
        "rules_loaded": len(engine.rules),
        "rule_issues": [issue.to_dict() for issue in engine.rule_issues],
        "catalog_hash": engine.catalog_hash,
        "rules_source": source,
        "rules_last_compiled": engine.source.stat().st_mtime if engine.source and engine.source.exists() else None,
    }
