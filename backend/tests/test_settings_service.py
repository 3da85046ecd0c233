import unittest
from flask import Flask

from retail_billing.extensions import db
from retail_billing.models import ActivityLog, StoreSetting, User
from retail_billing.services import settings_service


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from retail_billing import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(ActivityLog).delete()
        db.session.query(StoreSetting).delete()
        db.session.query(User).delete()
        db.session.commit()

        self.admin = User(name="Admin", email="admin@test.local", role="ADMIN", is_active=True)
        db.session.add(self.admin)
        db.session.commit()

    def test_defaults_without_row(self):
        settings = settings_service.get_settings()
        self.assertEqual(settings["store_name"], "My Store")
        self.assertEqual(settings["currency"], "USD")
        self.assertEqual(settings["default_tax_rate_bps"], 0)
        # Reading never creates the row
        self.assertIsNone(db.session.get(StoreSetting, 1))

    def test_ensure_settings_is_idempotent(self):
        first = settings_service.ensure_settings()
        second = settings_service.ensure_settings()
        db.session.commit()
        self.assertIs(first, second)
        self.assertEqual(db.session.query(StoreSetting).count(), 1)

    def test_update_creates_row_and_logs(self):
        settings = settings_service.update_settings(
            patch={"store_name": "Corner Shop", "default_tax_rate_bps": 825},
            user_id=self.admin.id,
        )
        self.assertEqual(settings.id, settings_service.SETTINGS_ROW_ID)
        self.assertEqual(settings.store_name, "Corner Shop")
        self.assertEqual(settings.default_tax_rate_bps, 825)
        self.assertEqual(settings.updated_by_user_id, self.admin.id)

        entry = db.session.query(ActivityLog).filter_by(action="UPDATE_SETTINGS").one()
        self.assertEqual(entry.user_id, self.admin.id)

    def test_update_keeps_untouched_fields(self):
        settings_service.update_settings(patch={"store_name": "A", "receipt_footer": "Thanks!"}, user_id=self.admin.id)
        settings_service.update_settings(patch={"store_name": "B"}, user_id=self.admin.id)

        settings = settings_service.get_settings()
        self.assertEqual(settings["store_name"], "B")
        self.assertEqual(settings["receipt_footer"], "Thanks!")


if __name__ == "__main__":
    unittest.main()
