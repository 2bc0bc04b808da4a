"""
Load a JSON question bank into the database.

    python -m quicktest.seed_questions bank.json [--replace]

The file is a list of objects:
  - stem: str
  - options: {"A": str, "B": str, ...}
  - correct_option: one of the option labels
  - topic, subject: optional names (created on first use)
  - type: "mcq" | "truefalse" (default "mcq")
  - difficulty: 1 | 2 | 3 (default 1)
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .config import get_settings
from .logging_utils import configure_logging
from .models import (
    Option,
    Question,
    QuestionTypeDB,
    Subject,
    Topic,
    init_db,
    make_engine,
    make_session_factory,
)
from .schemas import OPTION_LABELS

logger = logging.getLogger(__name__)


def load_json_list(path: Path) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        return data
    raise ValueError(f"Expected a JSON list in {path}, got {type(data)}")


def _get_or_create(db: Session, model, name: Optional[str]):
    if not name:
        return None
    row = db.query(model).filter(model.name == name).first()
    if row is None:
        row = model(name=name)
        db.add(row)
        db.flush()
    return row


def build_question(db: Session, item: Dict[str, Any]) -> Question:
    options = item.get("options") or {}
    labels = sorted(options)
    bad = [label for label in labels if label not in OPTION_LABELS]
    if bad:
        raise ValueError(f"invalid option labels {bad} in {item.get('stem')!r}")
    correct = item.get("correct_option")
    if correct not in options:
        raise ValueError(f"correct_option {correct!r} is not an option of {item.get('stem')!r}")

    return Question(
        stem=item["stem"],
        qtype=QuestionTypeDB(item.get("type", "mcq")),
        difficulty=int(item.get("difficulty", 1)),
        correct_option=correct,
        topic=_get_or_create(db, Topic, item.get("topic")),
        subject=_get_or_create(db, Subject, item.get("subject")),
        options=[Option(label=label, text=options[label]) for label in labels],
    )


def seed(path: Path, database_url: str, replace: bool = False) -> int:
    engine = make_engine(database_url)
    init_db(engine)
    db = make_session_factory(engine)()
    try:
        if replace:
            # Clear existing questions so we don't keep duplicating
            db.query(Option).delete()
            db.query(Question).delete()

        questions = [build_question(db, item) for item in load_json_list(path)]
        db.add_all(questions)
        db.commit()
        return len(questions)
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("bank", type=Path, help="JSON question bank")
    parser.add_argument("--replace", action="store_true", help="delete existing questions first")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    count = seed(args.bank, args.database_url or settings.database_url, replace=args.replace)
    logger.info("Seeded %d questions from %s", count, args.bank)


if __name__ == "__main__":
    main()
