"""Tests for image validation, the ImageKit client, and POST /api/v1/upload/image."""

import base64
import inspect
import unittest
from unittest.mock import patch

import httpx
from db_support import make_settings
from fastapi.testclient import TestClient

from app.api.v1.upload import post_image
from app.core.config import get_settings
from app.main import app
from app.schemas.upload import ImageUploadResponse
from app.services.image_upload import (
    MAX_IMAGE_BYTES,
    ImageUploadError,
    ImageUploadNotConfiguredError,
    is_imagekit_configured,
    upload_image,
    validate_image,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _imagekit_settings(**overrides: object):
    values = {
        "IMAGEKIT_PUBLIC_KEY": "public_abc",
        "IMAGEKIT_PRIVATE_KEY": "private_xyz",
        "IMAGEKIT_URL_ENDPOINT": "https://ik.imagekit.io/demo/",
    }
    values.update(overrides)
    return make_settings(**values)


class TestValidateImage(unittest.TestCase):
    def test_accepts_small_image(self) -> None:
        validate_image("image/png", 10)

    def test_rejects_empty(self) -> None:
        with self.assertRaises(ImageUploadError) as ctx:
            validate_image("image/png", 0)
        self.assertEqual(ctx.exception.message, "No file provided")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_rejects_non_image(self) -> None:
        for content_type in ("application/pdf", None, ""):
            with self.assertRaises(ImageUploadError):
                validate_image(content_type, 10)

    def test_size_limit_is_inclusive(self) -> None:
        validate_image("image/jpeg", MAX_IMAGE_BYTES)
        with self.assertRaises(ImageUploadError):
            validate_image("image/jpeg", MAX_IMAGE_BYTES + 1)


class TestConfiguration(unittest.TestCase):
    def test_requires_all_three_values(self) -> None:
        self.assertTrue(is_imagekit_configured(_imagekit_settings()))
        self.assertFalse(is_imagekit_configured(make_settings()))
        self.assertFalse(is_imagekit_configured(_imagekit_settings(IMAGEKIT_PRIVATE_KEY="")))
        self.assertFalse(is_imagekit_configured(_imagekit_settings(IMAGEKIT_URL_ENDPOINT="")))

    def test_url_endpoint_is_normalized(self) -> None:
        self.assertEqual(_imagekit_settings().IMAGEKIT_URL_ENDPOINT, "https://ik.imagekit.io/demo")


class TestUploadImage(unittest.TestCase):
    def test_posts_multipart_with_basic_auth(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "url": "https://ik.imagekit.io/demo/uploads/a_x1.png",
                    "fileId": "f1",
                    "thumbnailUrl": "https://ik.imagekit.io/demo/tr:n-thumb/a_x1.png",
                },
            )

        settings = _imagekit_settings()
        client = httpx.Client(transport=httpx.MockTransport(handler))
        result = upload_image(PNG, "a.png", "image/png", settings, client=client)

        self.assertEqual(
            result,
            ImageUploadResponse(
                url="https://ik.imagekit.io/demo/uploads/a_x1.png",
                fileId="f1",
                thumbnailUrl="https://ik.imagekit.io/demo/tr:n-thumb/a_x1.png",
            ),
        )
        request = seen[0]
        self.assertEqual(str(request.url), settings.IMAGEKIT_UPLOAD_URL)
        expected = base64.b64encode(b"private_xyz:").decode()
        self.assertEqual(request.headers["Authorization"], f"Basic {expected}")
        body = request.read()
        self.assertIn(b'name="folder"', body)
        self.assertIn(b"/uploads/", body)
        self.assertIn(b'name="useUniqueFileName"', body)

    def test_not_configured(self) -> None:
        with self.assertRaises(ImageUploadNotConfiguredError):
            upload_image(PNG, "a.png", "image/png", make_settings())

    def test_imagekit_rejection(self) -> None:
        client = httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(403, json={"message": "no"}))
        )
        with self.assertRaises(ImageUploadError) as ctx:
            upload_image(PNG, "a.png", "image/png", _imagekit_settings(), client=client)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.message, "Failed to upload image")

    def test_response_without_url(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        with self.assertRaises(ImageUploadError):
            upload_image(PNG, "a.png", "image/png", _imagekit_settings(), client=client)


class TestUploadRoute(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = _imagekit_settings()
        app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _post(self, content: bytes, content_type: str):
        return self.client.post(
            "/api/v1/upload/image",
            files={"file": ("a.png", content, content_type)},
        )

    def test_anonymous_upload_is_allowed(self) -> None:
        uploaded = ImageUploadResponse(url="https://ik.imagekit.io/demo/uploads/a.png", fileId="f1")
        with patch("app.api.v1.upload.upload_image", return_value=uploaded):
            response = self.client.post(
                "/api/v1/upload/image",
                files={"file": ("avatar.png", PNG, "image/png")},
                data={"fileName": "avatar.png", "folder": "signup"},
            )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["fileId"], "f1")

    def test_route_runs_in_threadpool(self) -> None:
        # The ImageKit client is blocking; a sync route keeps it off the event loop.
        self.assertFalse(inspect.iscoroutinefunction(post_image))

    def test_success(self) -> None:
        uploaded = ImageUploadResponse(url="https://ik.imagekit.io/demo/uploads/a.png", fileId="f1")
        with patch("app.api.v1.upload.upload_image", return_value=uploaded) as mock_upload:
            response = self._post(PNG, "image/png")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["url"], "https://ik.imagekit.io/demo/uploads/a.png")
        self.assertEqual(mock_upload.call_args.args[0], PNG)

    def test_non_image_is_400(self) -> None:
        response = self._post(b"%PDF-1.4", "application/pdf")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "File must be an image")

    def test_oversized_is_400(self) -> None:
        response = self._post(b"\x00" * (MAX_IMAGE_BYTES + 1), "image/png")
        self.assertEqual(response.status_code, 400)

    def test_missing_file_is_400(self) -> None:
        response = self.client.post("/api/v1/upload/image")
        self.assertEqual(response.status_code, 400)

    def test_not_configured_is_500(self) -> None:
        self.settings = make_settings()
        response = self._post(PNG, "image/png")
        self.assertEqual(response.status_code, 500)

    def test_imagekit_failure_is_500(self) -> None:
        with patch(
            "app.api.v1.upload.upload_image",
            side_effect=ImageUploadError("Failed to upload image", status_code=502),
        ):
            response = self._post(PNG, "image/png")
        self.assertEqual(response.status_code, 500)


if __name__ == "__main__":
    unittest.main()
