#!/usr/bin/env python3
"""
Portfolio Platform — Demo Assessment Seed.

Creates one answered assessment, generates its results with the local stub
provider, then applies a targeted edit so the demo starts with two versions.

Usage:
    python scripts/seed_demo_assessment.py
    python scripts/seed_demo_assessment.py --company "Acme Ltd" --industry Retail
"""

import argparse
import sys
import uuid

sys.path.insert(0, ".")

from portfolio import create_app
from portfolio.ai.gateway import LLMGateway, LocalStubProvider
from portfolio.ai.generation import GenerationOrchestrator
from portfolio.models import db
from portfolio.models.ai import AIConversationMessage
from portfolio.models.assessment import Assessment, AssessmentResponse
from portfolio.services import assessment_results_service as svc

ANSWERS = [
    (1, "top_frustration", "What slows your team down most?", ["manual reporting", "status meetings"]),
    (2, "data_maturity", "Rate your data maturity (1-5)", 2),
    (3, "automation_maturity", "Rate your automation maturity (1-5)", 2),
    (4, "ai_opportunities", "Where could AI help?", ["meeting notes", "customer emails"]),
    (5, "change_readiness", "How ready is the team for change?", "curious but busy"),
    (6, "timeline", "When do you want results?", "90 days"),
]


def seed(company: str, industry: str) -> str:
    assessment = Assessment(
        user_id=str(uuid.uuid4()),
        company_name=company,
        company_size="51-200",
        industry=industry,
        user_role="Operations Lead",
        status="submitted",
    )
    db.session.add(assessment)
    db.session.flush()
    for step, key, text, value in ANSWERS:
        db.session.add(AssessmentResponse(
            assessment_id=assessment.id, step_number=step,
            question_key=key, question_text=text, answer_value=value,
        ))

    conversation_id = str(uuid.uuid4())
    db.session.add_all([
        AIConversationMessage(conversation_id=conversation_id, assessment_id=assessment.id,
                              role="user", content="The first quick win should be about invoicing."),
        AIConversationMessage(conversation_id=conversation_id, assessment_id=assessment.id,
                              role="assistant", content="Agreed, I will retitle it."),
    ])
    db.session.commit()

    orchestrator = GenerationOrchestrator(
        LLMGateway(LocalStubProvider(), default_model="local-stub"),
        model="local-stub",
    )
    generated = svc.generate(assessment.id, orchestrator=orchestrator)
    print(f"  Generated v{generated['version_number']} for {assessment.id}")

    updated = svc.apply_update(
        assessment.id,
        conversation_id=conversation_id,
        message_id=str(uuid.uuid4()),
        updates=[{
            "updateType": "quick_wins",
            "sectionPath": "quick_wins[0].title",
            "newValue": "Automate invoice reminders",
            "reason": "Invoicing is the biggest time sink",
        }],
    )
    print(f"  Applied targeted edit → v{updated['version_number']}")
    return assessment.id


def main():
    parser = argparse.ArgumentParser(description="Seed a demo assessment with generated results.")
    parser.add_argument("--company", default="Northwind Traders")
    parser.add_argument("--industry", default="Wholesale")
    args = parser.parse_args()

    app = create_app()
    app.config["LLM_PROVIDER"] = "local"
    with app.app_context():
        assessment_id = seed(args.company, args.industry)
    print(f"Demo assessment ready: {assessment_id}")


if __name__ == "__main__":
    main()
