import unittest
from decimal import Decimal
from types import SimpleNamespace

from config import TestConfig
from smartcrm import create_app
from smartcrm.extensions import db
from smartcrm.models import Client, Product, Profile


def product(id=1, name="Датчик", base="10.00", retail="12.00", unit="шт", category="Датчики"):
    return SimpleNamespace(
        id=id,
        name=name,
        description="",
        unit=unit,
        category=category,
        base_price=Decimal(base),
        retail_price=Decimal(retail),
    )


class AppTestCase(unittest.TestCase):
    """Fresh app + in-memory database per test."""

    def setUp(self):
        self.app = create_app(TestConfig)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()

        self.manager = self.make_profile("manager", role="manager", full_name="Иван Менеджер")
        self.engineer = self.make_profile("engineer", role="specialist", full_name="Пётр Инженер")
        self.client_row = Client(name="ООО Умный дом", phone="+375290000000")
        db.session.add(self.client_row)
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def make_profile(self, username, role="specialist", full_name=None, password="secret"):
        profile = Profile(username=username, role=role, full_name=full_name or username)
        profile.set_password(password)
        db.session.add(profile)
        db.session.commit()
        return profile

    def make_product(self, sku, base, retail, name=None):
        row = Product(
            sku=sku,
            name=name or sku,
            unit="шт",
            base_price=Decimal(base),
            retail_price=Decimal(retail),
        )
        db.session.add(row)
        db.session.commit()
        return row
