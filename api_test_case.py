"""
Shared base class for API tests: a fresh in-memory database per test.
"""
import os
import unittest
from unittest import mock

# Keep bcrypt fast under test
os.environ.setdefault('BCRYPT_ROUNDS', '4')

import mongomock

from app import create_app
from auth_jwt import create_token
from models import db, SuperAdmin, Branch, Employee, BranchAdmin, StockManager

TEST_CONFIG = {
    'TESTING': True,
    'ENV_NAME': 'development',
    'MONGO_URI': 'mongodb://localhost:27017/bookstore_test',
    'JWT_SECRET': 'test-secret',
    'JWT_EXPIRES_IN': '1h',
    'JWT_COOKIE_EXPIRE': 90,
}

PASSWORD = 'secret123'


class FakeRedis:
    """In-process stand-in for the few redis commands cache and auth_jwt issue."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        value = self.store.get(key)
        if value is None:
            return None
        return value if isinstance(value, bytes) else str(value).encode('utf-8')

    def setex(self, key, ttl, value):
        self.store[key] = value.encode('utf-8') if isinstance(value, str) else value

    def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    def exists(self, key):
        return int(key in self.store)


class ApiTestCase(unittest.TestCase):
    config_overrides = {}

    def setUp(self):
        # No Redis under test: cache and token revocation stay disabled
        for target in ('cache.redis_available', 'auth_jwt.redis_available'):
            patcher = mock.patch(target, False)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.mongo = mongomock.MongoClient()
        config = dict(TEST_CONFIG, **self.config_overrides)
        self.app = create_app(config, mongo_client=self.mongo)
        db.create_all()
        self.client = self.app.test_client()

    def use_fake_redis(self):
        """Enable the response cache and token revocation against one shared FakeRedis."""
        fake = FakeRedis()
        for module in ('cache', 'auth_jwt'):
            for target, value in ((f'{module}.redis_client', fake), (f'{module}.redis_available', True)):
                patcher = mock.patch(target, value)
                patcher.start()
                self.addCleanup(patcher.stop)
        return fake

    # --- fixtures ---

    def create_user(self, model_cls, password=PASSWORD, **fields):
        user = model_cls(**fields)
        user.set_password(password)
        user.save()
        return user

    def make_super_admin(self, username='root', email='root@example.com'):
        return self.create_user(SuperAdmin, name='Root Admin', username=username, email=email)

    def make_branch(self, name='Main Branch', created_by=1, **fields):
        data = {
            'name': name,
            'location': 'Jaipur',
            'shopOwnerName': 'R. Sharma',
            'address': '12 MI Road',
            'createdBy': created_by,
        }
        data.update(fields)
        return Branch.create(**data)

    def make_employee(self, branch, email='staff@example.com', **fields):
        return self.create_user(Employee, name='Staff Member', email=email, branchId=branch.id, **fields)

    def make_branch_admin(self, branch, email='manager@example.com'):
        employee = self.make_employee(branch, email=f'emp.{email}')
        return self.create_user(BranchAdmin, name='Branch Manager', email=email,
                                branchId=branch.id, employeeId=employee.id)

    def make_stock_manager(self, email='stock@example.com', phone='9876543210'):
        return self.create_user(StockManager, name='Stock Keeper', email=email,
                                phone=phone, address='Warehouse 4')

    def bearer(self, user):
        with self.app.app_context():
            token, _ = create_token(user)
        return {'Authorization': f'Bearer {token}'}

    # --- requests ---

    def get(self, url, user=None, **kwargs):
        return self.client.get(url, headers=self.bearer(user) if user else None, **kwargs)

    def post(self, url, payload=None, user=None):
        return self.client.post(url, json=payload or {}, headers=self.bearer(user) if user else None)

    def patch(self, url, payload=None, user=None):
        return self.client.patch(url, json=payload or {}, headers=self.bearer(user) if user else None)

    def delete(self, url, user=None):
        return self.client.delete(url, headers=self.bearer(user) if user else None)
