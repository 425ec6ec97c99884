"""
Exchange-rate analytics endpoints
"""

from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import PlainTextResponse

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import serialize
from ..analytics import ExportFormat, export_currency_pairs, format_currency_pairs_for_table
from ..errors import ExchangeError
from ..users import Role


router = APIRouter()

analyst = require_roles(Role.TREASURER, Role.VALIDATOR)


def _with_table(analysis):
    result = serialize(analysis)
    result["table"] = serialize(format_currency_pairs_for_table(analysis["currency_pairs"]))
    return result


@router.get("/currency-pairs")
async def overall_analysis(
    user_id: str = Depends(analyst),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Currency-pair rate statistics across every transaction"""
    return _with_table(system.analytics.overall_analysis())


@router.get("/currency-pairs/export")
async def export_overall_analysis(
    format: str = "csv",
    user_id: str = Depends(analyst),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        export_format = ExportFormat(format)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported format: {format}")
    pairs = system.analytics.overall_analysis()["currency_pairs"]
    if export_format == ExportFormat.DICT:
        return {"rows": serialize(export_currency_pairs(pairs, export_format))}
    media_type = "text/csv" if export_format == ExportFormat.CSV else "application/json"
    return PlainTextResponse(export_currency_pairs(pairs, export_format), media_type=media_type)


@router.get("/custody")
async def overall_custody_analysis(
    user_id: str = Depends(analyst),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Currency-pair statistics for transactions that touched custody"""
    return _with_table(system.analytics.overall_custody_analysis())


@router.get("/wallets/{wallet_id}")
async def wallet_analysis(
    wallet_id: str,
    user_id: str = Depends(analyst),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        return _with_table(system.analytics.wallet_analysis(wallet_id))
    except ExchangeError as e:
        raise http_error(e)


@router.get("/custody/{custody_id}")
async def custody_analysis(
    custody_id: str,
    user_id: str = Depends(analyst),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        return _with_table(system.analytics.custody_analysis(custody_id))
    except ExchangeError as e:
        raise http_error(e)
