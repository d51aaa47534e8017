"""Seed a demo saga and run one suggestion generation job.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from sqlalchemy import delete, select

# Make `saga_suggestions` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from saga_suggestions.db.session import SessionLocal
from saga_suggestions.models import (
    ContentFragment,
    EntityRelationship,
    FragmentMention,
    LearningWeight,
    RelationshipSuggestion,
    SagaEntity,
    SuggestionJob,
)
from saga_suggestions.services.background_jobs import run_generation_job
from saga_suggestions.services.batch_jobs import start_batch


DEFAULT_SAGA_ID = "star-wars-demo"

DEMO_ENTITIES = [
    ("Luke Skywalker", "character", {"age": 19, "family": "Skywalker", "homeworld": "Tatooine"}, 0.0,
     "Farm boy from Tatooine trained by Obi-Wan Kenobi. Obi-Wan Kenobi gives him his father's lightsaber."),
    ("Obi-Wan Kenobi", "character", {"age": 57, "order": "Jedi", "homeworld": "Stewjon"}, -19.0,
     "Exiled Jedi Master watching over Luke Skywalker on Tatooine."),
    ("Leia Organa", "character", {"age": 19, "family": "Skywalker", "title": "Princess"}, 0.0,
     "Rebel leader and twin sister of Luke Skywalker."),
    ("Han Solo", "character", {"age": 29, "ship": "Millennium Falcon"}, 0.0,
     "Smuggler who joins the Rebellion alongside Luke Skywalker and Leia Organa."),
    ("Darth Vader", "character", {"age": 41, "family": "Skywalker", "order": "Sith"}, -22.0,
     "Sith Lord of the Galactic Empire hunting Obi-Wan Kenobi."),
    ("Rebel Alliance", "faction", {"alignment": "light"}, None, "Coalition fighting the Galactic Empire."),
    ("Galactic Empire", "faction", {"alignment": "dark"}, None, "Authoritarian regime ruled by the Emperor."),
    ("Tatooine", "location", {"climate": "desert"}, None, "Desert planet in the Outer Rim."),
]

DEMO_RELATIONSHIPS = [
    ("Luke Skywalker", "Rebel Alliance", "member_of"),
    ("Obi-Wan Kenobi", "Rebel Alliance", "member_of"),
    ("Leia Organa", "Rebel Alliance", "member_of"),
    ("Han Solo", "Rebel Alliance", "member_of"),
    ("Darth Vader", "Galactic Empire", "member_of"),
    ("Rebel Alliance", "Galactic Empire", "at_war_with"),
    ("Luke Skywalker", "Tatooine", "lives_on"),
    ("Obi-Wan Kenobi", "Tatooine", "lives_on"),
]

DEMO_FRAGMENTS = [
    ("Obi-Wan rescues Luke in the Jundland Wastes.", ["Luke Skywalker", "Obi-Wan Kenobi"]),
    ("Obi-Wan teaches Luke to trust the Force aboard the Falcon.", ["Luke Skywalker", "Obi-Wan Kenobi", "Han Solo"]),
    ("Luke and Han rescue Leia from the Death Star.", ["Luke Skywalker", "Han Solo", "Leia Organa"]),
    ("Vader duels Obi-Wan on the Death Star.", ["Darth Vader", "Obi-Wan Kenobi"]),
    ("Luke watches Obi-Wan fall and escapes with Leia.", ["Luke Skywalker", "Obi-Wan Kenobi", "Leia Organa"]),
    ("Han returns to help Luke destroy the Death Star.", ["Han Solo", "Luke Skywalker"]),
]


def reset_saga(db, saga_id: str) -> None:
    """Remove existing records for the demo saga."""

    db.execute(delete(LearningWeight).where(LearningWeight.scope_key == saga_id))
    db.execute(delete(SuggestionJob).where(SuggestionJob.saga_id == saga_id))
    db.execute(delete(RelationshipSuggestion).where(RelationshipSuggestion.saga_id == saga_id))
    db.execute(delete(EntityRelationship).where(EntityRelationship.saga_id == saga_id))
    db.execute(delete(ContentFragment).where(ContentFragment.saga_id == saga_id))
    db.execute(delete(SagaEntity).where(SagaEntity.saga_id == saga_id))
    db.commit()


def seed_saga(db, saga_id: str) -> dict[str, int]:
    """Insert demo entities, relationships and content fragments."""

    ids: dict[str, int] = {}
    for name, entity_type, attributes, anchor, description in DEMO_ENTITIES:
        entity = SagaEntity(
            saga_id=saga_id,
            canonical_name=name,
            entity_type=entity_type,
            attributes_json=attributes,
            timeline_anchor=anchor,
            description=description,
        )
        db.add(entity)
        db.flush()
        ids[name] = entity.id

    for source, target, relationship_type in DEMO_RELATIONSHIPS:
        db.add(
            EntityRelationship(
                saga_id=saga_id,
                source_entity_id=ids[source],
                target_entity_id=ids[target],
                relationship_type=relationship_type,
                strength=80,
                metadata_json={"origin": "seed"},
            )
        )

    for text, mentioned in DEMO_FRAGMENTS:
        fragment = ContentFragment(saga_id=saga_id, fragment_text=text)
        db.add(fragment)
        db.flush()
        for name in mentioned:
            db.add(FragmentMention(fragment_id=fragment.id, entity_id=ids[name]))

    db.commit()
    return ids


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo saga and generate relationship suggestions.")
    parser.add_argument(
        "--saga-id",
        default=DEFAULT_SAGA_ID,
        help=f"Saga ID to seed (default: {DEFAULT_SAGA_ID})",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing records for the saga before seeding.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data, run one generation job inline and print a short summary."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = parse_args()
    saga_id: str = args.saga_id

    with SessionLocal() as db:
        if not args.no_reset:
            reset_saga(db, saga_id)
        ids = seed_saga(db, saga_id)
        job = start_batch(db, saga_id)

    result = run_generation_job(job.id)

    with SessionLocal() as db:
        statuses = db.scalars(
            select(RelationshipSuggestion.status).where(RelationshipSuggestion.saga_id == saga_id)
        ).all()

    print("Seed complete")
    print(f"saga_id={saga_id}")
    print(f"entities_created={len(ids)}")
    print(f"job_id={result.job_id} status={result.status}")
    print(f"pairs_processed={result.pairs_processed}/{result.pairs_total}")
    print(f"suggestions_created={result.suggestions_created}")
    print(f"auto_accepted={sum(1 for status in statuses if status == 'auto_accepted')}")
    print()
    print("Inspect:")
    print(f"  GET /sagas/{saga_id}/suggestions")
    print(f"  GET /sagas/{saga_id}/suggestions/progress")
    print(f"  GET /sagas/{saga_id}/learning")


if __name__ == "__main__":
    main()
