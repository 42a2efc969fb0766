from datetime import date
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from matching.coordinator import InvalidInputError, Reconciler, RunAbortedError
from matching.merge import MergeExecutor
from matching.report import format_report
from matching.resolver import AmbiguityPolicy, AutomatedPolicy

from .models import (
    Account, AccountCreate, EntryCreate, EntryKind, LedgerEntry,
    ReconcileRequest, ReconcileRunRequest, ReconcileRunResponse,
)
from .service import LedgerService, LedgerServiceError, NotFoundError

app = FastAPI(
    title="Transfer Reconciler API",
    description="Double-entry ledger that merges matching deposits and withdrawals into transfers",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService()


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "transfer-reconciler"}


@app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def create_account(request: AccountCreate) -> Account:
    return ledger_service.add_account(request.user_id, request.name, request.account_type)


@app.get("/users/{user_id}/accounts", response_model=list[Account], tags=["Accounts"])
def list_accounts(user_id: int) -> list[Account]:
    return ledger_service.list_accounts(user_id)


@app.post("/entries", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED, tags=["Entries"])
def create_entry(request: EntryCreate) -> LedgerEntry:
    if request.kind == EntryKind.DEPOSIT:
        record = ledger_service.record_deposit
    elif request.kind == EntryKind.WITHDRAWAL:
        record = ledger_service.record_withdrawal
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only deposits and withdrawals can be captured")
    try:
        return record(
            request.account_id, request.amount, request.date,
            request.description, request.counterparty_name, request.currency_code,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LedgerServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/entries/{entry_id}", response_model=LedgerEntry, tags=["Entries"])
def get_entry(entry_id: int) -> LedgerEntry:
    try:
        return ledger_service.get_entry(entry_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Entry #{entry_id} not found")


@app.post("/reconciliations", response_model=ReconcileRunResponse, tags=["Reconciliation"])
def run_reconciliation(request: ReconcileRunRequest) -> ReconcileRunResponse:
    today = date.today()
    start = request.start_date or ledger_service.first_entry_date(request.user_id) or today.replace(day=1)
    end = request.end_date or ledger_service.last_entry_date(request.user_id) or today
    if start > end:
        start, end = end, start

    resolver = AutomatedPolicy(
        expected_name=request.expected_name,
        skip_others=request.skip_others,
        on_ambiguity=AmbiguityPolicy(request.on_ambiguity),
    )
    reconciler = Reconciler(ledger_service, ledger_service, resolver, MergeExecutor(ledger_service))
    try:
        report = reconciler.run(ReconcileRequest(
            user_id=request.user_id,
            account_ids=request.account_ids,
            start_date=start,
            end_date=end,
            expected_name=request.expected_name,
            window_days=request.window_days,
        ))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except RunAbortedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return ReconcileRunResponse(report=report, lines=format_report(report))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
