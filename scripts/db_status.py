#!/usr/bin/env python3
"""Show DB record counts for the assessment tables."""
import sys
sys.path.insert(0, ".")

from portfolio import create_app
from portfolio.models import db

TABLES = [
    "assessments", "assessment_responses", "assessment_results",
    "assessment_versions", "assessment_chat_updates",
    "ai_conversation_messages", "ai_usage_logs",
]

app = create_app()
with app.app_context():
    total = 0
    for t in TABLES:
        c = db.session.execute(db.text(f"SELECT COUNT(*) FROM {t}")).scalar()
        total += c
        print(f"    {t:.<30} {c}")
    print(f"    {'TOTAL':.<30} {total}")

    current = db.session.execute(db.text(
        "SELECT assessment_id, version_number FROM assessment_versions WHERE is_current"
    )).fetchall()
    for assessment_id, version_number in current:
        print(f"    current  {assessment_id}  v{version_number}")
