"""
Test Fixtures Package Initialization

Shared helpers imported by test modules and conftest:

- Document / Folder: resource kinds satisfying the Resource protocol
  structurally, without inheriting from a common base
- FakeClock: manually advanced time source for expiration tests
- FakeRedis: in-memory Redis shared by several engine instances
"""

from tests.fixtures.authz_fixtures import Document, FakeClock, Folder
from tests.fixtures.redis_fixtures import FakeRedis

__all__ = ['Document', 'FakeClock', 'FakeRedis', 'Folder']
