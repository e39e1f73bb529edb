"""
Tests for the HTTP surface: image proxy, open image lookup, health and usage.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from agents.generation.exceptions import AssetResolutionError, ImageFormatError, ImageSizeError
from api.requests.api_open_images import process_open_image_search
from api.server import app, get_open_image_service, get_usage_tracker
from models.images import OpenEducationalImage

UPSTREAM = 'https://upload.wikimedia.org/wikipedia/commons/a/a.png'


@pytest.fixture
def client() -> TestClient:
    """Test client without lifespan; dependencies are overridden per test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def open_images():
    service = MagicMock()
    service.find_educational_image = AsyncMock(return_value=OpenEducationalImage(
        url='/image-proxy?u=x',
        sourceUrl=UPSTREAM,
        title='Water cycle',
        source='wikimedia',
        license='CC BY-SA 4.0',
        creator='Jane',
        attribution='Jane | wikimedia | CC BY-SA 4.0',
        confidence=0.812,
    ))
    return service


class TestImageProxy:
    """GET/OPTIONS /image-proxy"""

    def test_preflight(self, client):
        response = client.options('/image-proxy')
        assert response.status_code == 204
        assert response.headers['access-control-allow-origin'] == '*'

    @pytest.mark.parametrize("url", ['', 'https://evil.example.com/a.png', 'ftp://upload.wikimedia.org/a.png'])
    def test_untrusted_urls_are_rejected(self, client, url):
        with patch('api.image_proxy.fetch_upstream', AsyncMock()) as fetch:
            response = client.get('/image-proxy', params={'u': url})
        assert response.status_code == 400
        fetch.assert_not_awaited()

    def test_streams_trusted_image(self, client):
        with patch('api.image_proxy.fetch_upstream', AsyncMock(return_value=(b'\x89PNG', 'image/png'))):
            response = client.get('/image-proxy', params={'u': UPSTREAM})

        assert response.status_code == 200
        assert response.content == b'\x89PNG'
        assert response.headers['content-type'] == 'image/png'
        assert response.headers['cache-control'] == 'public, max-age=86400'
        assert response.headers['access-control-allow-origin'] == '*'

    @pytest.mark.parametrize("error, status", [
        (ImageFormatError("html"), 415),
        (ImageSizeError("huge"), 413),
        (AssetResolutionError("404 upstream"), 502),
    ])
    def test_upstream_failures(self, client, error, status):
        with patch('api.image_proxy.fetch_upstream', AsyncMock(side_effect=error)):
            response = client.get('/image-proxy', params={'u': UPSTREAM})
        assert response.status_code == status


class TestOpenImagesEndpoint:
    """GET /api/open-images"""

    def test_missing_query(self, client, open_images):
        app.dependency_overrides[get_open_image_service] = lambda: open_images
        response = client.get('/api/open-images', params={'q': '  '})
        assert response.status_code == 400
        assert response.json() == {'error': 'Missing q query parameter.'}

    def test_returns_best_image(self, client, open_images):
        app.dependency_overrides[get_open_image_service] = lambda: open_images
        response = client.get('/api/open-images', params={'q': 'water cycle', 'lang': 'fil'})

        assert response.status_code == 200
        assert response.json()['image']['attribution'] == 'Jane | wikimedia | CC BY-SA 4.0'
        open_images.find_educational_image.assert_awaited_once_with('water cycle', 'FIL')

    def test_lookup_failure_is_null_image(self, client, open_images):
        open_images.find_educational_image.side_effect = RuntimeError("backend exploded")
        app.dependency_overrides[get_open_image_service] = lambda: open_images
        response = client.get('/api/open-images', params={'q': 'water cycle'})
        assert response.status_code == 200
        assert response.json() == {'image': None}

    @pytest.mark.asyncio
    async def test_process_defaults_language(self, open_images):
        await process_open_image_search(open_images, 'volcano', '')
        open_images.find_educational_image.assert_awaited_once_with('volcano', 'EN')


class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'

    def test_usage_snapshot(self, client, tracker):
        tracker.try_increment('generations')
        app.dependency_overrides[get_usage_tracker] = lambda: tracker

        response = client.get('/api/usage')

        assert response.status_code == 200
        body = response.json()
        assert body['generations'] == 1
        assert body['limits'] == {'generations': 5, 'images': 20}
        assert body['can_generate'] is True
