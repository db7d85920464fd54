"""List sections and their connected learners using the app's database config.
Run from the repo root:

    python scripts/list_sections.py [teacher_id]

This uses the same DB configuration as the app (ENVIRONMENT / DATABASE_URL).
"""

import sys
import traceback

# Ensure we can import utils from parent directory
sys.path.insert(0, ".")

try:
    from app import create_app
    from utils.services import get_services
except Exception:
    print("Failed to import the app. Make sure you're running from the repo root.")
    traceback.print_exc()
    sys.exit(1)

teacher_id = sys.argv[1] if len(sys.argv) > 1 else None
app = create_app({"CREATE_TABLES": False})

try:
    with app.app_context():
        services = get_services()
        sections = services.sections.list(created_by=teacher_id)
        if not sections:
            print("No sections found in the database (empty result set).")
        else:
            print(f"Found {len(sections)} sections:\n")
            for s in sections:
                connected = len(services.registry.for_section(s.id))
                print(
                    f"{s.id}  {s.name} (grade {s.grade_level or '-'}) owner={s.created_by} "
                    f"students={len(s.students)} subjects={len(s.subjects)} connected={connected}"
                )
except Exception:
    print("Database query failed:")
    traceback.print_exc()
    sys.exit(2)

print("\nDone.")
