"""
Hiring Companies Routes

GET /hiring-companies - Public list of approved companies applicants can apply to
"""

from fastapi import APIRouter

from irefair.services.referrer_service import list_approved_companies
from irefair.utils.validation import normalize_http_url

router = APIRouter(prefix="/hiring-companies", tags=["Hiring Companies"])


@router.get("")
async def list_hiring_companies():
    companies = [
        {
            "code": company["company_ircrn"],
            "name": company.get("company_name") or "",
            "industry": company.get("company_industry") or "",
            "careersUrl": normalize_http_url(company.get("careers_portal")),
        }
        for company in list_approved_companies()
    ]
    companies.sort(key=lambda item: item["name"].lower())
    return {"ok": True, "companies": companies}
