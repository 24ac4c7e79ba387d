from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from msme_insights.db.models import Scheme

SCHEME_CATALOG: list[dict[str, object]] = [
    {
        "scheme_name": "Pradhan Mantri Mudra Yojana",
        "ministry": "Ministry of Finance",
        "category": "Credit",
        "aliases": ["Mudra", "Mudra Loan", "PMMY", "मुद्रा"],
    },
    {
        "scheme_name": "Prime Minister's Employment Generation Programme",
        "ministry": "Ministry of MSME",
        "category": "Subsidy",
        "aliases": ["PMEGP"],
    },
    {
        "scheme_name": "Credit Guarantee Fund Scheme",
        "ministry": "Ministry of MSME",
        "category": "Credit",
        "aliases": ["CGTMSE", "Credit Guarantee Fund Trust for Micro and Small Enterprises"],
    },
    {
        "scheme_name": "Stand-Up India",
        "ministry": "Ministry of Finance",
        "category": "Credit",
        "aliases": ["Standup India", "Stand Up India"],
    },
    {
        "scheme_name": "Startup India",
        "ministry": "Ministry of Commerce and Industry",
        "category": "Entrepreneurship",
        "aliases": ["Startup India Seed Fund"],
    },
    {
        "scheme_name": "Technology Upgradation Fund",
        "ministry": "Ministry of Textiles",
        "category": "Technology",
        "aliases": ["TUFS", "ATUFS", "Amended Technology Upgradation Fund Scheme"],
    },
    {
        "scheme_name": "PM Vishwakarma",
        "ministry": "Ministry of MSME",
        "category": "Skill Development",
        "aliases": ["Vishwakarma Yojana"],
    },
    {
        "scheme_name": "PM SVANidhi",
        "ministry": "Ministry of Housing and Urban Affairs",
        "category": "Credit",
        "aliases": ["SVANidhi", "Street Vendor Loan"],
    },
    {
        "scheme_name": "Udyam Registration",
        "ministry": "Ministry of MSME",
        "category": "Registration",
        "aliases": ["Udyam", "Udyog Aadhaar", "MSME Registration"],
    },
    {
        "scheme_name": "Zero Defect Zero Effect",
        "ministry": "Ministry of MSME",
        "category": "Quality",
        "aliases": ["ZED", "ZED Certification"],
    },
    {
        "scheme_name": "Scheme of Fund for Regeneration of Traditional Industries",
        "ministry": "Ministry of MSME",
        "category": "Cluster Development",
        "aliases": ["SFURTI"],
    },
    {
        "scheme_name": "Micro and Small Enterprises Cluster Development Programme",
        "ministry": "Ministry of MSME",
        "category": "Cluster Development",
        "aliases": ["MSE-CDP", "Cluster Development Programme"],
    },
    {
        "scheme_name": "PM Formalisation of Micro Food Processing Enterprises",
        "ministry": "Ministry of Food Processing Industries",
        "category": "Subsidy",
        "aliases": ["PMFME", "PM FME"],
    },
    {
        "scheme_name": "Production Linked Incentive Scheme",
        "ministry": "Ministry of Commerce and Industry",
        "category": "Incentive",
        "aliases": ["PLI", "PLI Scheme"],
    },
]


async def seed_scheme_catalog(session: AsyncSession) -> int:
    inserted = 0
    for entry in SCHEME_CATALOG:
        scheme_name = str(entry["scheme_name"])
        existing = await session.scalar(select(Scheme).where(Scheme.scheme_name == scheme_name))
        if existing:
            continue
        session.add(
            Scheme(
                scheme_name=scheme_name,
                ministry=str(entry["ministry"]),
                category=str(entry["category"]),
                aliases_json=list(entry["aliases"]),
                is_active=True,
            )
        )
        inserted += 1

    await session.commit()
    return inserted
