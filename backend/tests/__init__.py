"""
Pattern Recall Test Suite

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures (clock, engine, repository, mock session)
    ├── fakes.py             # In-memory CardRepository and stub catalog refiller
    └── unit/                # Isolated tests: no database, no LLM provider
        ├── test_sm2.py      # Interval engine
        ├── test_selection.py / test_queue_replenisher.py
        ├── test_review_service.py / test_grader.py
        ├── test_repository.py   # SQL queries against a mock session
        └── test_study_api.py    # HTTP routes via TestClient

Running Tests:
    pytest backend/tests/ -v
"""
