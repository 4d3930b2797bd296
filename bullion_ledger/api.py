"""
FastAPI REST API Module

Thin HTTP adapter over the voucher orchestrator, the PDC lifecycle and the
maturity sweep. Domain errors are returned with their status code and
structured error body.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .config import get_config
from .exceptions import LedgerError
from .logging_config import setup_logging
from .system import LedgerSystem
from . import __version__


class StockItemModel(BaseModel):
    stock_id: str
    gross_weight: Decimal = Field(..., description="Gross weight in grams")
    purity: Decimal = Field(..., description="Fineness in (0, 1]")
    pieces: int = 0
    remarks: Optional[str] = None


class CashLineModel(BaseModel):
    line_id: Optional[str] = Field(None, description="Echo an existing line id to keep it across edits")
    currency_id: str
    amount: Decimal
    cash_type: str = Field(..., description="cash, bank, cheque, card or transfer")
    account_id: Optional[str] = None
    cheque_bank_id: Optional[str] = None
    bank_detail_id: Optional[str] = None
    transfer_account_id: Optional[str] = None
    cheque_no: Optional[str] = None
    cheque_date: Optional[date] = None
    fx_rate: Optional[Decimal] = None
    fx_base_rate: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    vat_percentage: Optional[Decimal] = None
    card_charge_amount: Optional[Decimal] = None
    card_charge_percent: Optional[Decimal] = None
    remarks: Optional[str] = None


class CreateEntryRequest(BaseModel):
    type: str = Field(..., description="metal-receipt, metal-payment, cash-receipt, cash-payment, "
                                       "currency-receipt or currency-payment")
    status: str = "draft"
    party_id: str
    voucher_code: str
    voucher_date: Optional[date] = None
    stock_items: Optional[List[StockItemModel]] = None
    cash: Optional[List[CashLineModel]] = None
    entered_by: Optional[str] = None
    remarks: Optional[str] = None


class EditEntryRequest(BaseModel):
    type: Optional[str] = None
    status: Optional[str] = None
    party_id: Optional[str] = None
    voucher_code: Optional[str] = None
    voucher_date: Optional[date] = None
    stock_items: Optional[List[StockItemModel]] = None
    cash: Optional[List[CashLineModel]] = None
    remarks: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: str


class ProcessMaturedRequest(BaseModel):
    triggered_by: Optional[str] = None
    as_of: Optional[date] = None


def _payload(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(exclude_none=True)


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create the API application over a ledger system (built from config when omitted)"""
    if system is None:
        cfg = get_config()
        setup_logging(cfg.log_level, log_format=cfg.log_format, log_file=cfg.log_file)
        system = LedgerSystem(config=cfg)

    app = FastAPI(
        title="Bullion Ledger API",
        description="Voucher posting, dual cash/gold ledger and post-dated cheque lifecycle",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/entries", status_code=status.HTTP_201_CREATED)
    def create_entry(
        request: CreateEntryRequest,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        """Create a voucher; approved vouchers post immediately"""
        entry = system.orchestrator.create_entry(_payload(request), user_id=x_user_id)
        return entry.to_dict()

    @app.get("/entries/{entry_id}")
    def get_entry(entry_id: str, system: LedgerSystem = Depends(get_ledger_system)):
        return system.orchestrator.get_entry(entry_id).to_dict()

    @app.put("/entries/{entry_id}")
    def edit_entry(
        entry_id: str,
        request: EditEntryRequest,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        """Edit a voucher, reversing and re-posting it when approved"""
        entry = system.orchestrator.edit_entry(entry_id, _payload(request), user_id=x_user_id)
        return entry.to_dict()

    @app.delete("/entries/{entry_id}")
    def delete_entry(
        entry_id: str,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        entry = system.orchestrator.delete_entry(entry_id, user_id=x_user_id)
        return {"id": entry.id, "voucher_code": entry.voucher_code, "deleted": True}

    @app.patch("/entries/{entry_id}/status")
    def update_status(
        entry_id: str,
        request: UpdateStatusRequest,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        entry = system.orchestrator.update_status(entry_id, request.status, user_id=x_user_id)
        return entry.to_dict()

    @app.post("/entries/{entry_id}/cash/{line_ref}/pdc/clear")
    def clear_pdc(
        entry_id: str,
        line_ref: str,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        return system.orchestrator.clear_pdc(entry_id, line_ref, user_id=x_user_id).to_dict()

    @app.post("/entries/{entry_id}/cash/{line_ref}/pdc/bounce")
    def bounce_pdc(
        entry_id: str,
        line_ref: str,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        return system.orchestrator.bounce_pdc(entry_id, line_ref, user_id=x_user_id).to_dict()

    @app.post("/entries/{entry_id}/cash/{line_ref}/pdc/cancel")
    def cancel_pdc(
        entry_id: str,
        line_ref: str,
        system: LedgerSystem = Depends(get_ledger_system),
        x_user_id: Optional[str] = Header(None)
    ):
        return system.orchestrator.cancel_pdc(entry_id, line_ref, user_id=x_user_id).to_dict()

    @app.post("/pdc/process-matured")
    def process_matured(
        request: Optional[ProcessMaturedRequest] = None,
        system: LedgerSystem = Depends(get_ledger_system)
    ):
        """Run the maturity sweep; per-schedule failures are reported, not raised"""
        request = request or ProcessMaturedRequest()
        result = system.maturity.process_matured_pdcs(
            triggered_by=request.triggered_by,
            as_of=request.as_of
        )
        return result.to_dict()

    @app.get("/audit/integrity")
    def verify_audit_integrity(system: LedgerSystem = Depends(get_ledger_system)):
        """Verify audit trail integrity"""
        return system.audit_trail.verify_integrity()

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    cfg = get_config()
    uvicorn.run(
        "bullion_ledger.api:create_app",
        factory=True,
        host=host or cfg.api_host,
        port=port or cfg.api_port,
        reload=debug,
        log_level=cfg.log_level.lower()
    )
