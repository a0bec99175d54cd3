# caselookup/api/routers/search.py
import logging
from typing import Dict
from fastapi import APIRouter, Depends, Request, status

from caselookup.api.deps import get_write_api_key, get_read_api_key, get_request_orchestrator, get_case_store
from caselookup.core.security import get_user_id
from caselookup.models_api import search as api_models
from caselookup.services.case_status import CaseRecord
from caselookup.services.case_store import CaseStore
from caselookup.services.request_orchestrator import RequestOrchestrator
from caselookup.services.search_parser import parse_search_input
from caselookup.utils.common import normalize_case_number

logger = logging.getLogger(__name__)
router = APIRouter()


def _record_to_result(record: CaseRecord) -> api_models.CaseResult:
    return api_models.CaseResult(
        case_number=record.case_number,
        case_id=record.case_id,
        fetch_status=api_models.FetchStatusResponse(status=record.status.value, message=record.status_message),
        last_updated=record.last_updated,
        summary=record.summary,
    )


@router.post("/search", response_model=api_models.CaseSearchResponse, status_code=status.HTTP_200_OK)
async def search_cases(
    payload: api_models.CaseSearchRequest,
    request: Request,
    user_id: str = Depends(get_user_id),
    api_key: str = Depends(get_write_api_key),
    orchestrator: RequestOrchestrator = Depends(get_request_orchestrator),
):
    case_numbers = parse_search_input(payload.search)
    user_agent = payload.user_agent or request.headers.get("user-agent")
    logger.info(f"[{user_id}] Search request parsed into {len(case_numbers)} case number(s).")

    results: Dict[str, CaseRecord] = await orchestrator.process_case_search_request(case_numbers, user_id, user_agent)
    return api_models.CaseSearchResponse(results={cn: _record_to_result(r) for cn, r in results.items()})


@router.post("/status", response_model=api_models.CaseSearchResponse, status_code=status.HTTP_200_OK)
async def get_case_statuses(
    payload: api_models.CaseStatusRequest,
    user_id: str = Depends(get_user_id),
    api_key: str = Depends(get_read_api_key),
    store: CaseStore = Depends(get_case_store),
):
    """Read-only poll of stored status; never queues anything. Unknown case numbers are left out."""
    case_numbers = list(dict.fromkeys(normalize_case_number(c) for c in payload.case_numbers if c.strip()))
    records = store.read_many(case_numbers)
    logger.debug(f"[{user_id}] Status poll for {len(case_numbers)} case(s); {len(records)} known.")
    return api_models.CaseSearchResponse(results={cn: _record_to_result(r) for cn, r in records.items()})
