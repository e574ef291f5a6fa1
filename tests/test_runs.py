import threading

import pytest
from sqlalchemy import func, select

from nomenclador.ingestors.base import (
    CandidateName,
    Extracted,
    IngestCancelled,
    Lookup,
    ParseError,
    run_candidate_pass,
)
from nomenclador.models import CommonName, ImportRun
from nomenclador.services.ambiguity import AmbiguityCache
from nomenclador.services.runs import begin_run, complete_run, list_runs, run_summaries


def _extract(payload):
    sis_id, name = payload
    if name is None:
        return ParseError(sis_id, "sin nombre")
    return Extracted(sis_id, (Lookup("source_id", sis_id, "iucn"),), (CandidateName(name, "iucn"),))


def _count_names(db):
    return db.execute(select(func.count()).select_from(CommonName)).scalar_one()


def test_begin_and_complete_run(db):
    run_id = begin_run(db, "common_names_iucn")
    run = db.get(ImportRun, run_id)
    assert run.status == "running"
    assert run.ended_at is None

    complete_run(db, run_id, processed=3, added=2, errors=1, notes="nota")
    run = db.get(ImportRun, run_id)
    assert run.status == "completed"
    assert run.ended_at is not None
    assert (run.records_processed, run.records_added, run.records_updated, run.errors) == (3, 2, 0, 1)


def test_complete_unknown_run_raises(db):
    with pytest.raises(LookupError):
        complete_run(db, 12345)


def test_pass_records_counts_and_notes(db, make_taxon):
    make_taxon("Canis lupus", source_id="1")
    payloads = [("1", "Gray wolf"), ("2", "Coyote"), ("3", None), ("1", "Timber wolf")]

    stats = run_candidate_pass(db, "iucn", payloads, _extract, import_type="common_names_iucn")

    assert stats.as_dict() == {"processed": 4, "added": 2, "errors": 1, "skipped_no_taxon": 1, "matched": 2}
    run = list_runs(db)[0]
    assert run.status == "completed"
    assert run.records_processed == 4
    assert run.records_added == 2
    assert run.errors == 1
    assert run.notes == "Omitidos 1 registros sin taxón coincidente"
    assert _count_names(db) == 2


def test_crash_rolls_back_and_leaves_run_running(db, make_taxon):
    make_taxon("Canis lupus", source_id="1")

    def explode(payload):
        if payload[0] == "boom":
            raise RuntimeError("disco lleno")
        return _extract(payload)

    with pytest.raises(RuntimeError):
        run_candidate_pass(db, "iucn", [("1", "Gray wolf"), ("boom", "x")], explode, import_type="common_names_iucn")

    assert _count_names(db) == 0
    run = db.execute(select(ImportRun).where(ImportRun.import_type == "common_names_iucn")).scalar_one()
    assert run.status == "running"
    assert run.ended_at is None


def test_cancel_between_rows_rolls_back(db, make_taxon):
    make_taxon("Canis lupus", source_id="1")
    cancel = threading.Event()
    cache = AmbiguityCache()

    def extract_then_cancel(payload):
        cancel.set()
        return _extract(payload)

    with pytest.raises(IngestCancelled):
        run_candidate_pass(
            db, "iucn", [("1", "Gray wolf"), ("1", "Wolf")], extract_then_cancel,
            import_type="common_names_iucn", cache=cache, cancel=cancel,
        )

    assert _count_names(db) == 0
    assert [r.status for r in list_runs(db)] == ["running"]


def test_successful_pass_invalidates_ambiguity_cache(db, make_taxon):
    make_taxon("Canis lupus", source_id="1")
    cache = AmbiguityCache()
    cache.get(db)
    assert len(cache) == 1

    run_candidate_pass(db, "iucn", [("1", "Gray wolf")], _extract, cache=cache)
    assert len(cache) == 0


def test_run_summaries_only_sum_completed_runs(db, make_taxon):
    first = begin_run(db, "common_names_iucn")
    complete_run(db, first, added=5)
    second = begin_run(db, "common_names_iucn")
    complete_run(db, second, added=2)
    begin_run(db, "common_names_iucn")
    begin_run(db, "synonyms_col")

    summaries = {s.import_type: s for s in run_summaries(db)}
    iucn = summaries["common_names_iucn"]
    assert iucn.total_added == 7
    assert iucn.has_completed is True
    assert iucn.last_ended_at is not None

    col = summaries["synonyms_col"]
    assert col.total_added == 0
    assert col.has_completed is False
    assert col.last_ended_at is None
