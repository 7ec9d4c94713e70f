"""Test helpers for RiseUp integration tests.

This module re-exports all helpers for convenient imports:

    from tests.helpers import (
        FakeLocalStore, FakeRemoteStore,
        load_scenario, seed_remote, build_export_payload,
        mock_firestore, setup_integration,
    )

See individual modules for full documentation:
- fakes.py: In-memory remote and local stores
- setup.py: YAML scenarios and config entry setup over a mocked Firestore
"""

from tests.helpers.fakes import FakeLocalStore, FakeRemoteStore
from tests.helpers.setup import (
    API_KEY,
    DOCUMENTS_URL,
    PROJECT_ID,
    USER_ID,
    build_export_payload,
    create_config_entry,
    firestore_document,
    load_scenario,
    mock_firestore,
    seed_remote,
    setup_integration,
)

__all__ = [
    "API_KEY",
    "DOCUMENTS_URL",
    "PROJECT_ID",
    "USER_ID",
    "FakeLocalStore",
    "FakeRemoteStore",
    "build_export_payload",
    "create_config_entry",
    "firestore_document",
    "load_scenario",
    "mock_firestore",
    "seed_remote",
    "setup_integration",
]
