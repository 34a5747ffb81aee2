"""
Demo fixture - the sample records, providers and family members shown by the
mobile app on first run.

Seeding is always explicit: read paths never invent data.  Each collection is
only seeded when it is still empty for the account, so running the seed twice
is harmless.
"""

import logging

from magda.models.linked_account import LinkedAccountInput
from magda.models.medical_record import RecordInput
from magda.models.provider import ProviderInput

logger = logging.getLogger(__name__)

DEMO_RECORDS = [
    {
        "title": "Annual Physical Exam",
        "date": "2023-06-15",
        "type": "visit",
        "provider": "Dr. Sarah Johnson",
        "description": "Annual physical examination with routine blood work. Blood pressure 120/80. "
                       "Heart rate 72 BPM. All vitals within normal range.",
        "uploadType": "document",
        "metadata": {
            "aiAnalyzed": True,
            "keywords": ["physical exam", "vitals", "blood pressure", "heart rate", "wellness"],
            "summary": "Annual physical with normal findings",
        },
    },
    {
        "title": "Cholesterol Panel Results",
        "date": "2023-05-20",
        "type": "lab",
        "provider": "Memorial Hospital",
        "description": "Complete lipid panel shows total cholesterol: 190 mg/dL, HDL: 55 mg/dL, "
                       "LDL: 120 mg/dL, Triglycerides: 85 mg/dL.",
        "uploadType": "image",
        "metadata": {
            "aiAnalyzed": True,
            "keywords": ["cholesterol", "lipids", "HDL", "LDL", "triglycerides", "cardiovascular"],
            "summary": "Lipid panel showing normal cholesterol levels",
        },
    },
    {
        "title": "Flu Vaccine",
        "date": "2023-04-10",
        "type": "immunization",
        "provider": "City Medical Center",
        "description": "Seasonal influenza vaccine administered. Quadrivalent vaccine, lot #FL29384. "
                       "No adverse reactions.",
        "uploadType": "camera",
    },
    {
        "title": "MRI - Right Knee",
        "date": "2023-03-05",
        "type": "imaging",
        "provider": "Dr. Michael Chen",
        "description": "MRI of right knee shows mild meniscal tear, no signs of ligament damage. "
                       "Conservative treatment recommended.",
        "uploadType": "document",
        "metadata": {
            "aiAnalyzed": True,
            "keywords": ["MRI", "knee", "meniscus", "tear", "orthopedic", "joint"],
            "summary": "Right knee MRI showing mild meniscal tear",
        },
    },
    {
        "title": "Prescription - Amoxicillin",
        "date": "2023-02-18",
        "type": "prescription",
        "provider": "Dr. Sarah Johnson",
        "description": "Amoxicillin 500mg, 1 capsule three times daily for 10 days. "
                       "For treatment of bacterial sinus infection.",
        "uploadType": "image",
        "metadata": {
            "aiAnalyzed": True,
            "keywords": ["antibiotics", "amoxicillin", "prescription", "sinus infection", "medication"],
            "summary": "Prescription for Amoxicillin to treat sinus infection",
            "medications": ["amoxicillin"],
        },
    },
    {
        "title": "Chest X-Ray",
        "date": "2023-01-05",
        "type": "imaging",
        "provider": "Memorial Hospital",
        "description": "Chest X-ray due to persistent cough. No abnormalities detected.",
        "uploadType": "fhir",
        "metadata": {
            "aiAnalyzed": True,
            "keywords": ["x-ray", "chest", "respiratory", "cough", "lungs"],
            "summary": "Normal chest X-ray results",
        },
    },
    {
        "title": "Dermatology Consultation",
        "date": "2022-12-15",
        "type": "visit",
        "provider": "Dr. Emily Wong",
        "description": "Evaluation of mole on upper back. No signs of irregularity or malignancy.",
        "uploadType": "document",
    },
]

DEMO_PROVIDERS = [
    {
        "name": "Dr. Sarah Johnson",
        "specialty": "Primary Care",
        "facility": "City Medical Group",
        "phone": "(555) 123-4567",
        "address": "123 Main St, Anytown, USA",
        "notes": "Annual checkup in April.",
    },
    {
        "name": "Dr. Michael Chen",
        "specialty": "Cardiologist",
        "facility": "Heart Health Specialists",
        "phone": "(555) 987-6543",
        "address": "456 Cardio Lane, Anytown, USA",
        "notes": "Follow-up appointment needed in 6 months.",
    },
]

DEMO_FAMILY = [
    {"firstName": "Jane", "lastName": "Smith", "relationship": "Spouse", "dateOfBirth": "04/15/1985"},
    {"firstName": "Alex", "lastName": "Smith", "relationship": "Child", "dateOfBirth": "06/22/2012"},
]


async def seed_demo_data(repository, account_id: str, *, include_family: bool = True) -> dict[str, int]:
    """Write the demo fixture for *account_id*; returns how many items of each kind were added."""
    counts = {"records": 0, "providers": 0, "linked_accounts": 0}

    if not await repository.list_all(account_id):
        for data in DEMO_RECORDS:
            await repository.upload(account_id, RecordInput.model_validate(data), enrich=False)
            counts["records"] += 1

    if not await repository.list_providers(account_id):
        for data in DEMO_PROVIDERS:
            await repository.upsert_provider(account_id, ProviderInput.model_validate(data))
            counts["providers"] += 1

    if include_family and not await repository.list_linked_accounts(account_id):
        for data in DEMO_FAMILY:
            await repository.add_linked_account(account_id, LinkedAccountInput.model_validate(data))
            counts["linked_accounts"] += 1

    logger.info("Seeded demo data for %s: %s", account_id, counts)
    return counts
