"""
BharatCRM - Test fixtures
In-memory MongoDB (mongomock-motor) swapped in for config.db.
"""

import os
import sys

import pytest
from mongomock_motor import AsyncMongoMockClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config


@pytest.fixture
def mock_db(monkeypatch):
    db = AsyncMongoMockClient()["bharatcrm_test"]
    monkeypatch.setattr(config, "db", db)
    return db
