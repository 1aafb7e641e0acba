from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from backend.app.models import CandidateCreateRequest
from backend.app.store import InMemoryStore, VersionConflictError


def test_candidate_write_and_read_concurrent() -> None:
    store = InMemoryStore()
    store.seed_default_stages()
    read_errors: list[Exception] = []

    def writer(index: int) -> None:
        request = CandidateCreateRequest(
            first_name="Candidate",
            last_name=f"No{index:04d}",
            email=f"candidate{index}@example.com",
            position="Support Engineer",
        )
        created = store.create_candidate(request)
        store.advance_candidate(created.id)

    def reader() -> None:
        for _ in range(300):
            try:
                store.list_candidates()
                store.list_stages()
            except Exception as exc:  # pragma: no cover - regression trap
                read_errors.append(exc)

    with ThreadPoolExecutor(max_workers=10) as executor:
        futures = [executor.submit(writer, i) for i in range(200)]
        futures.extend(executor.submit(reader) for _ in range(4))
        for future in futures:
            future.result()

    assert not read_errors
    candidates = store.list_candidates()
    assert len(candidates) == 200
    assert all(candidate.version == 2 for candidate in candidates)


def test_racing_edits_with_same_version_only_one_wins() -> None:
    store = InMemoryStore()
    store.seed_default_stages()
    candidate = store.create_candidate(
        CandidateCreateRequest(
            first_name="Race", last_name="Condition", email="race@example.com", position="QA"
        )
    )
    outcomes: list[str] = []

    def attempt(action: str) -> None:
        try:
            if action == "advance":
                store.advance_candidate(candidate.id, expected_version=1)
            else:
                store.reject_candidate(candidate.id, expected_version=1)
            outcomes.append("ok")
        except VersionConflictError:
            outcomes.append("conflict")

    with ThreadPoolExecutor(max_workers=8) as executor:
        futures = [executor.submit(attempt, action) for action in ["advance", "reject"] * 8]
        for future in futures:
            future.result()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 15
    assert store.get_candidate(candidate.id).version == 2
