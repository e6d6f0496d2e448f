from typing import Optional

import pytest

from fakes import FakeClassifier, make_schema
from persongroup.config import ResolverConfig
from persongroup.matching.shortlist import CandidateShortlister
from persongroup.matching.verifier import VisionVerifier
from persongroup.resolution import ResolutionOrchestrator
from persongroup.store import CaptureStore, Database


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "persongroup.sqlite3", busy_timeout_s=10.0)


@pytest.fixture
def store(db):
    return CaptureStore(db)


@pytest.fixture
def add_capture(store):
    def _add(person: Optional[str], image_ref: Optional[str] = None, captured_at=None, schema=None):
        image = image_ref if image_ref is not None else f"images/{person or 'blank'}-{len(store.list_all())}.jpg"
        description = schema if schema is not None else (make_schema(person) if person else None)
        return store.insert(
            image,
            captured_at=captured_at,
            description_schema=description,
            natural_summary=f"Person {person}." if description else None,
        )

    return _add


@pytest.fixture
def make_orchestrator(db):
    def _make(classifier=None, comparator=None, timeout_s=5.0, **config_kwargs):
        config = ResolverConfig(database_path=str(db.path), **config_kwargs)
        shortlister = CandidateShortlister(classifier or FakeClassifier(), timeout_s=timeout_s)
        verifier = None
        if comparator is not None:
            verifier = VisionVerifier(
                comparator,
                shortlist_limit=config.vision_shortlist_limit,
                accept_similarity=config.vision_accept_similarity,
                accept_confidence=config.vision_accept_confidence,
                timeout_s=timeout_s,
            )
        return ResolutionOrchestrator(db, shortlister, verifier=verifier, config=config)

    return _make
