import hashlib
import unittest
from unittest.mock import MagicMock

import requests
from botocore.exceptions import ClientError

from recipebook.errors import StorageError
from recipebook.storage import BucketAssetStore, CdnAssetStore, InMemoryAssetStore


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class InMemoryAssetStoreTests(unittest.TestCase):
    def test_upload_owns_delete(self):
        store = InMemoryAssetStore()
        url = store.upload(b"data", "my cake.png", "image/png")
        self.assertTrue(url.startswith("https://example.test/assets/"))
        self.assertTrue(url.endswith("-my_cake.png"))
        self.assertTrue(store.owns(url))
        self.assertFalse(store.owns("https://elsewhere.test/x.png"))
        self.assertFalse(store.owns(None))
        store.delete(url)
        self.assertEqual(store.stored_objects, {})
        # Deleting twice only logs.
        store.delete(url)


class BucketAssetStoreTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.store = BucketAssetStore(
            bucket="recipes-bucket",
            public_base_url="https://storage.googleapis.com/recipes-bucket/",
            client=self.client,
        )

    def test_upload_puts_object_under_prefix(self):
        url = self.store.upload(b"data", "cake.jpg", "image/jpeg")
        kwargs = self.client.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "recipes-bucket")
        self.assertTrue(kwargs["Key"].startswith("recipes/"))
        self.assertEqual(kwargs["ContentType"], "image/jpeg")
        self.assertEqual(
            url, f"https://storage.googleapis.com/recipes-bucket/{kwargs['Key']}"
        )
        self.assertTrue(self.store.owns(url))

    def test_upload_failure_raises_storage_error(self):
        self.client.put_object.side_effect = _client_error("500", "PutObject")
        with self.assertRaises(StorageError):
            self.store.upload(b"data", "cake.jpg", "image/jpeg")

    def test_delete_existing_object(self):
        self.store.delete(
            "https://storage.googleapis.com/recipes-bucket/recipes/abc-choco%20cake.jpg"
        )
        self.client.delete_object.assert_called_once_with(
            Bucket="recipes-bucket", Key="recipes/abc-choco cake.jpg"
        )

    def test_delete_missing_object_is_skipped(self):
        self.client.head_object.side_effect = _client_error("404", "HeadObject")
        self.store.delete("https://storage.googleapis.com/recipes-bucket/recipes/gone.jpg")
        self.client.delete_object.assert_not_called()

    def test_delete_failure_raises_storage_error(self):
        self.client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        with self.assertRaises(StorageError):
            self.store.delete("https://storage.googleapis.com/recipes-bucket/recipes/a.jpg")


class CdnAssetStoreTests(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.store = CdnAssetStore(
            cloud_name="demo",
            api_key="key123",
            api_secret="shh",
            session=self.session,
        )

    def _respond(self, payload):
        response = MagicMock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        self.session.post.return_value = response

    def test_upload_signs_request_and_returns_secure_url(self):
        secure_url = "https://res.cloudinary.com/demo/image/upload/v1700000000/recettes/abc.jpg"
        self._respond({"secure_url": secure_url})
        url = self.store.upload(b"data", "cake.jpg", "image/jpeg")
        self.assertEqual(url, secure_url)

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://api.cloudinary.com/v1_1/demo/image/upload")
        data = kwargs["data"]
        expected = hashlib.sha1(
            f"folder=recettes&timestamp={data['timestamp']}shh".encode("utf-8")
        ).hexdigest()
        self.assertEqual(data["signature"], expected)
        self.assertEqual(data["api_key"], "key123")
        self.assertEqual(kwargs["files"]["file"][0], "cake.jpg")
        self.assertTrue(self.store.owns(url))

    def test_public_id_from_delivery_url(self):
        self.assertEqual(
            self.store.public_id(
                "https://res.cloudinary.com/demo/image/upload/v1700000000/recettes/abc.jpg"
            ),
            "recettes/abc",
        )
        self.assertEqual(
            self.store.public_id("https://res.cloudinary.com/demo/image/upload/recettes/x"),
            "recettes/x",
        )

    def test_delete_calls_destroy(self):
        self._respond({"result": "ok"})
        self.store.delete(
            "https://res.cloudinary.com/demo/image/upload/v1700000000/recettes/abc.jpg"
        )
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://api.cloudinary.com/v1_1/demo/image/destroy")
        self.assertEqual(kwargs["data"]["public_id"], "recettes/abc")

    def test_http_failure_raises_storage_error(self):
        self.session.post.side_effect = requests.ConnectionError("offline")
        with self.assertRaises(StorageError):
            self.store.upload(b"data", "cake.jpg", "image/jpeg")

    def test_not_owned_urls(self):
        self.assertFalse(self.store.owns("https://res.cloudinary.com/other/image/upload/a.jpg"))
        self.assertFalse(self.store.owns(""))


if __name__ == "__main__":
    unittest.main()
