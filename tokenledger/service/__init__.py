from tokenledger.service.bootstrap import build_ledger_facade
from tokenledger.service.facade import Dashboard, LedgerFacade, RefreshOutcome

__all__ = ["Dashboard", "LedgerFacade", "RefreshOutcome", "build_ledger_facade"]
