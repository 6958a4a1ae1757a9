import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from recipebook.app import create_app
from recipebook.config import Settings
from recipebook.dependencies import CATEGORIES_FILENAME, build_services
from recipebook.errors import ConfigError, StorageError

ADMIN_PASSWORD = "first-admin-password"
ADMIN2_PASSWORD = "second-admin-password"
JWT_SECRET = "api-test-signing-secret-0123456789abcdef"


def make_settings(tmp_dir: str, **overrides) -> Settings:
    values = dict(
        admin_password=ADMIN_PASSWORD,
        admin2_password=ADMIN2_PASSWORD,
        catalog_backend="filetree",
        catalog_dir=f"{tmp_dir}/recipes",
        asset_backend="memory",
        token_mode="session",
        token_ttl_seconds=None,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


class ApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.app = create_app(make_settings(self._tmp.name, **self.settings_overrides))
        self.client = TestClient(self.app)

    def tearDown(self):
        self.app.state.services.shutdown()
        self._tmp.cleanup()

    def login(self, username=None, password=ADMIN_PASSWORD) -> dict:
        body = {"password": password}
        if username:
            body["username"] = username
        response = self.client.post("/api/auth/login", json=body)
        self.assertEqual(response.status_code, 200, response.text)
        return {"x-admin-token": response.json()["token"]}


class AuthApiTests(ApiTestCase):
    def test_login_requires_password(self):
        response = self.client.post("/api/auth/login", json={"username": "admin1"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("message", response.json())

    def test_login_rejects_bad_credentials(self):
        response = self.client.post(
            "/api/auth/login", json={"username": "admin1", "password": ADMIN2_PASSWORD}
        )
        self.assertEqual(response.status_code, 401)
        response = self.client.post("/api/auth/login", json={"password": "nope"})
        self.assertEqual(response.status_code, 401)

    def test_accented_password_and_token_are_rejected_cleanly(self):
        response = self.client.post("/api/auth/login", json={"password": "mot-de-passe-é"})
        self.assertEqual(response.status_code, 401)

        self.login()
        headers = {"x-admin-token": "jeton-é".encode("latin-1")}
        status = self.client.get("/api/auth/status", headers=headers).json()
        self.assertEqual(status, {"isAdmin": False, "username": None})
        response = self.client.post("/api/categories", json={"name": "A"}, headers=headers)
        self.assertEqual(response.status_code, 401)

    def test_login_status_logout(self):
        response = self.client.post("/api/auth/login", json={"password": ADMIN_PASSWORD})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["username"], "admin1")
        headers = {"x-admin-token": payload["token"]}

        status = self.client.get("/api/auth/status", headers=headers).json()
        self.assertEqual(status, {"isAdmin": True, "username": "admin1"})
        self.assertEqual(
            self.client.get("/api/auth/status").json(), {"isAdmin": False, "username": None}
        )

        response = self.client.post("/api/auth/logout")
        self.assertEqual(response.status_code, 200)
        self.assertIn("message", response.json())
        self.assertFalse(
            self.client.get("/api/auth/status", headers=headers).json()["isAdmin"]
        )

    def test_second_login_invalidates_first_token(self):
        first = self.login()
        second = self.login(username="admin2", password=ADMIN2_PASSWORD)
        self.assertEqual(
            self.client.post("/api/categories", json={"name": "A"}, headers=first).status_code,
            401,
        )
        self.assertEqual(
            self.client.post("/api/categories", json={"name": "A"}, headers=second).status_code,
            201,
        )

    def test_protected_routes_require_token(self):
        for method, path in (
            ("post", "/api/recipes"),
            ("put", "/api/recipes/x"),
            ("delete", "/api/recipes/x"),
            ("post", "/api/categories"),
            ("delete", "/api/categories/x"),
            ("post", "/api/categories/x/subcategories"),
            ("delete", "/api/categories/x/subcategories/y"),
            ("post", "/api/upload/image"),
            ("get", "/api/catalog/partial-failures"),
        ):
            with self.subTest(method=method, path=path):
                response = getattr(self.client, method)(
                    path, headers={"x-admin-token": "bogus"}
                )
                self.assertEqual(response.status_code, 401)
                self.assertIn("message", response.json())


class SignedTokenApiTests(ApiTestCase):
    settings_overrides = {"token_mode": "signed", "jwt_secret": JWT_SECRET}

    def test_status_reports_username_and_logout_is_stateless(self):
        headers = self.login(username="admin2", password=ADMIN2_PASSWORD)
        status = self.client.get("/api/auth/status", headers=headers).json()
        self.assertEqual(status, {"isAdmin": True, "username": "admin2"})

        self.client.post("/api/auth/logout")
        self.assertTrue(
            self.client.get("/api/auth/status", headers=headers).json()["isAdmin"]
        )

    def test_both_tokens_stay_valid(self):
        first = self.login()
        second = self.login(username="admin2", password=ADMIN2_PASSWORD)
        for headers in (first, second):
            self.assertTrue(
                self.client.get("/api/auth/status", headers=headers).json()["isAdmin"]
            )


class CatalogScenarios:
    """API scenarios that must hold for every catalog backend."""

    def setUp(self):
        super().setUp()
        self.headers = self.login()

    def _create_category(self, name, *subcategories):
        response = self.client.post(
            "/api/categories", json={"name": name}, headers=self.headers
        )
        self.assertEqual(response.status_code, 201, response.text)
        category = response.json()
        for sub in subcategories:
            response = self.client.post(
                f"/api/categories/{category['id']}/subcategories",
                json={"name": sub},
                headers=self.headers,
            )
            self.assertEqual(response.status_code, 201, response.text)
        return category

    def _create_recipe(self, **body):
        response = self.client.post("/api/recipes", json=body, headers=self.headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_category_lifecycle_end_to_end(self):
        category = self._create_category("Desserts", "Cakes")
        self.assertEqual(category["sortOrder"], 999)

        recipe = self._create_recipe(
            title="Choco Cake", category="Desserts", subcategory="Cakes"
        )
        listed = self.client.get("/api/recipes").json()
        self.assertIn(recipe["id"], [r["id"] for r in listed])

        response = self.client.delete("/api/categories/Desserts", headers=self.headers)
        self.assertEqual(response.status_code, 409)

        response = self.client.delete(f"/api/recipes/{recipe['id']}", headers=self.headers)
        self.assertEqual(response.status_code, 204)

        response = self.client.delete("/api/categories/Desserts", headers=self.headers)
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get("/api/categories").json(), [])

    def test_search_scenario(self):
        self._create_category("Cuisine")
        soup = self._create_recipe(title="Tomato Soup", category="Cuisine")
        salad = self._create_recipe(title="Salad", category="Cuisine", tags=["tomato"])
        self._create_recipe(title="Bread", category="Cuisine")

        results = self.client.get("/api/recipes/search", params={"q": "tomato"}).json()
        self.assertEqual(sorted(r["id"] for r in results), sorted([soup["id"], salad["id"]]))
        self.assertEqual(self.client.get("/api/recipes/search").json(), [])
        self.assertEqual(
            self.client.get("/api/recipes/search", params={"q": "  "}).json(), []
        )

    def test_recipes_listed_newest_first(self):
        self._create_category("Cuisine")
        older = self._create_recipe(title="Older", category="Cuisine")
        newer = self._create_recipe(title="Newer", category="Cuisine")
        ids = [r["id"] for r in self.client.get("/api/recipes").json()]
        self.assertEqual(ids, [newer["id"], older["id"]])

    def test_create_validation(self):
        self._create_category("Desserts", "Cakes")
        cases = [
            {"category": "Desserts"},
            {"title": "No category"},
            {"title": "  ", "category": "Desserts"},
            {"title": "Unknown", "category": "Soupes"},
            {"title": "Unknown sub", "category": "Desserts", "subcategory": "Pies"},
            {"title": "Extra", "category": "Desserts", "unexpected": True},
        ]
        for body in cases:
            with self.subTest(body=body):
                response = self.client.post("/api/recipes", json=body, headers=self.headers)
                self.assertEqual(response.status_code, 400, response.text)
                self.assertIn("message", response.json())

    def test_get_update_round_trip(self):
        self._create_category("Desserts", "Cakes")
        created = self._create_recipe(
            title="Choco Cake",
            category="Desserts",
            subcategory="Cakes",
            description="Rich",
            ingredients=[{"name": "cocoa"}],
            extras={"servings": 8},
        )
        fetched = self.client.get(f"/api/recipes/{created['id']}").json()
        self.assertEqual(fetched, created)
        self.assertEqual(fetched["extras"], {"servings": 8})

        response = self.client.put(
            f"/api/recipes/{created['id']}",
            json={
                "id": "ignored",
                "createdAt": "2000-01-01T00:00:00+00:00",
                "category": "Desserts",
                "description": "Richer",
            },
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        updated = response.json()
        self.assertEqual(updated["id"], created["id"])
        self.assertEqual(updated["createdAt"], created["createdAt"])
        self.assertEqual(updated["description"], "Richer")
        self.assertEqual(updated["title"], "Choco Cake")
        self.assertEqual(updated["subcategory"], "Cakes")
        self.assertIsNotNone(updated["updatedAt"])

    def test_update_requires_category_and_known_id(self):
        self._create_category("Desserts")
        created = self._create_recipe(title="Flan", category="Desserts")
        response = self.client.put(
            f"/api/recipes/{created['id']}", json={"title": "Flan 2"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.put(
            "/api/recipes/unknown-000000", json={"category": "Desserts"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            self.client.get("/api/recipes/unknown-000000").status_code, 404
        )

    def test_update_moves_recipe_to_other_category(self):
        self._create_category("Desserts", "Cakes")
        self._create_category("Goûter")
        created = self._create_recipe(
            title="Choco Cake", category="Desserts", subcategory="Cakes"
        )
        response = self.client.put(
            f"/api/recipes/{created['id']}",
            json={"category": "Goûter", "subcategory": None},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["category"], "Goûter")
        listed = self.client.get("/api/recipes").json()
        self.assertEqual([(r["id"], r["category"]) for r in listed], [(created["id"], "Goûter")])
        # The old category is free again.
        response = self.client.delete("/api/categories/Desserts", headers=self.headers)
        self.assertEqual(response.status_code, 204)

    def test_delete_unknown_recipe(self):
        response = self.client.delete("/api/recipes/unknown-000000", headers=self.headers)
        self.assertEqual(response.status_code, 404)

    def test_delete_cascades_uploaded_image(self):
        self._create_category("Desserts")
        upload = self.client.post(
            "/api/upload/image",
            files={"recipeImage": ("cake.png", b"\x89PNG fake", "image/png")},
            headers=self.headers,
        )
        self.assertEqual(upload.status_code, 200, upload.text)
        image_url = upload.json()["imageUrl"]
        assets = self.app.state.services.assets
        self.assertEqual(len(assets.stored_objects), 1)

        recipe = self._create_recipe(title="Flan", category="Desserts", imageUrl=image_url)
        self.assertEqual(recipe["imageUrl"], image_url)
        self.client.delete(f"/api/recipes/{recipe['id']}", headers=self.headers)
        self.assertEqual(assets.stored_objects, {})

    def test_category_conflicts_and_not_found(self):
        category = self._create_category("Desserts", "Cakes")
        response = self.client.post(
            "/api/categories", json={"name": "Desserts"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 409)
        response = self.client.post("/api/categories", json={"name": " "}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            f"/api/categories/{category['id']}/subcategories",
            json={"name": "Cakes"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        response = self.client.post(
            "/api/categories/missing/subcategories", json={"name": "X"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 404)
        response = self.client.delete("/api/categories/missing", headers=self.headers)
        self.assertEqual(response.status_code, 404)

    def test_subcategory_removal(self):
        category = self._create_category("Desserts", "Cakes", "Tartes fines")
        recipe = self._create_recipe(
            title="Choco Cake", category="Desserts", subcategory="Cakes"
        )
        base = f"/api/categories/{category['id']}/subcategories"
        self.assertEqual(self.client.delete(f"{base}/Cakes", headers=self.headers).status_code, 409)
        self.assertEqual(
            self.client.delete(f"{base}/Tartes%20fines", headers=self.headers).status_code, 204
        )
        self.assertEqual(
            self.client.delete(f"{base}/Tartes%20fines", headers=self.headers).status_code, 404
        )
        self.client.delete(f"/api/recipes/{recipe['id']}", headers=self.headers)
        self.assertEqual(self.client.delete(f"{base}/Cakes", headers=self.headers).status_code, 204)
        categories = self.client.get("/api/categories").json()
        self.assertEqual(categories[0]["subcategories"], [])

    def test_categories_sorted_with_sorted_subcategories(self):
        self._create_category("Soupes")
        self._create_category("Desserts", "Tartes", "Cakes")
        categories = self.client.get("/api/categories").json()
        self.assertEqual([c["name"] for c in categories], ["Desserts", "Soupes"])
        self.assertEqual(
            [s["name"] for s in categories[0]["subcategories"]], ["Cakes", "Tartes"]
        )


class FileTreeCatalogApiTests(CatalogScenarios, ApiTestCase):
    pass


class DatabaseCatalogApiTests(CatalogScenarios, ApiTestCase):
    settings_overrides = {
        "catalog_backend": "database",
        "database_url": "sqlite+pysqlite:///:memory:",
    }


class UploadApiTests(ApiTestCase):
    settings_overrides = {"max_upload_bytes": 16}

    def setUp(self):
        super().setUp()
        self.headers = self.login()

    def test_upload_validation(self):
        response = self.client.post("/api/upload/image", headers=self.headers)
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/upload/image",
            files={"recipeImage": ("notes.txt", b"hello", "text/plain")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/upload/image",
            files={"recipeImage": ("big.png", b"x" * 17, "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)

    def test_upload_success(self):
        response = self.client.post(
            "/api/upload/image",
            files={"recipeImage": ("small.png", b"x" * 16, "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(self.app.state.services.assets.owns(response.json()["imageUrl"]))

    def test_upstream_failure_is_generic_500(self):
        services = self.app.state.services

        class BrokenAssets:
            def upload(self, data, filename, content_type):
                raise StorageError("cloud says no: secret detail")

        services.assets = BrokenAssets()
        response = self.client.post(
            "/api/upload/image",
            files={"recipeImage": ("small.png", b"img", "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 500)
        self.assertNotIn("secret detail", response.text)


class HousekeepingApiTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "status": "ok",
                "catalogBackend": "filetree",
                "assetBackend": "memory",
                "tokenMode": "session",
            },
        )

    def test_partial_failures_listed(self):
        headers = self.login()
        response = self.client.get("/api/catalog/partial-failures", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])


class ServiceWiringTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self._tmp.cleanup()

    def test_incomplete_backend_config_is_rejected(self):
        for overrides in (
            {"token_mode": "signed", "jwt_secret": None},
            {"catalog_backend": "database", "database_url": None},
            {"asset_backend": "bucket", "bucket_name": None},
            {"asset_backend": "cdn", "cloudinary_cloud_name": None},
        ):
            with self.subTest(overrides=overrides):
                with self.assertRaises(ConfigError):
                    build_services(make_settings(self._tmp.name, **overrides))

    def test_file_backend_keeps_categories_beside_recipes(self):
        services = build_services(make_settings(self._tmp.name))
        services.categories.create("Desserts")
        self.assertTrue(
            Path(self._tmp.name, "recipes", CATEGORIES_FILENAME).exists()
        )
        self.assertEqual(
            [a.username for a in services.credentials.admins], ["admin1", "admin2"]
        )


if __name__ == "__main__":
    unittest.main()
