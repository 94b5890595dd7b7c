"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from scriptorium.api.main import create_app
from scriptorium.repository.service import RepositoryService

API = "/api/v1"


@pytest.fixture
def client(settings):
    app = create_app(RepositoryService(settings))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def imported(client, builder):
    """A translation package imported through the API."""
    directory = builder.translation("test-kjv")
    response = client.post(f"{API}/import", json={"repository_url": str(directory)})
    assert response.status_code == 200
    assert response.json()["success"], response.json()["errors"]
    return directory


class TestInfo:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        """Root lists the API prefix."""
        data = client.get("/").json()
        assert data["name"] == "Scriptorium"
        assert data["api"] == API

    def test_cors_allows_only_local_origins(self, client):
        """Browser pages from other sites cannot drive the API."""
        local = client.get(f"{API}/stats", headers={"Origin": "http://localhost:5173"})
        assert local.headers["access-control-allow-origin"] == "http://localhost:5173"

        foreign = client.get(f"{API}/stats", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in foreign.headers

        preflight = client.options(
            f"{API}/repositories/test-kjv",
            headers={
                "Origin": "https://evil.example",
                "Access-Control-Request-Method": "DELETE",
            },
        )
        assert preflight.status_code == 400

    def test_health(self, client):
        """Health reports the migrated schema."""
        data = client.get(f"{API}/health").json()
        assert data["status"] == "ok"
        assert data["db_connected"] is True
        assert data["schema_version"] == 7


class TestImportAndRead:
    """Tests for import and stored content endpoints."""

    def test_import_response(self, client, builder):
        """Import returns the full result."""
        directory = builder.translation("test-kjv")
        response = client.post(
            f"{API}/import", json={"repository_url": str(directory)}
        )
        data = response.json()
        assert data["success"] is True
        assert data["books_imported"] == 3
        assert data["verses_imported"] == 56
        assert data["cancelled"] is False

    def test_failed_import_is_reported(self, client, builder):
        """Import failures come back with success=false, not an HTTP error."""
        directory = builder.translation("test-kjv")
        client.post(f"{API}/import", json={"repository_url": str(directory)})
        response = client.post(f"{API}/import", json={"repository_url": str(directory)})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["errors"][0].startswith("RepositoryExistsError")

    def test_read_chapter(self, client, imported):
        """Books and chapters are served from the store."""
        repositories = client.get(f"{API}/repositories").json()
        assert [r["id"] for r in repositories] == ["test-kjv"]

        books = client.get(f"{API}/repositories/test-kjv/books").json()
        assert [b["abbreviation"] for b in books] == ["GEN", "EXO", "LEV"]
        assert books[0]["testament"] == "OT"

        verses = client.get(f"{API}/books/{books[0]['id']}/chapters/2").json()
        assert len(verses) == 10
        assert verses[0]["text"] == "Verse 2.1 of Genesis."

    def test_unknown_resources(self, client):
        """Unknown repositories and books are 404s."""
        assert client.get(f"{API}/repositories/nope/books").status_code == 404
        assert client.get(f"{API}/repositories/nope/translations").status_code == 404
        assert client.get(f"{API}/books/999/chapters/1").status_code == 404
        assert client.delete(f"{API}/repositories/nope").status_code == 404

    def test_search(self, client, imported):
        """Search returns hits with book names."""
        hits = client.get(f"{API}/search", params={"q": "of Exodus"}).json()
        assert len(hits) == 16
        assert hits[0]["book_name"] == "Exodus"
        assert client.get(f"{API}/search").status_code == 422

    def test_delete(self, client, imported):
        """Deleting removes the repository and its content."""
        response = client.delete(f"{API}/repositories/test-kjv")
        assert response.json() == {"id": "test-kjv", "deleted": True}
        assert client.get(f"{API}/stats").json()["verses"] == 0

    def test_parent_translations(self, client, builder):
        """Parent packages expose their translations."""
        directory = builder.parent("bible", {"kjv": [builder.make_book(1, [2])]})
        client.post(f"{API}/import", json={"repository_url": str(directory)})

        parents = client.get(f"{API}/repositories/parents").json()
        assert [p["id"] for p in parents] == ["bible"]
        translations = client.get(f"{API}/repositories/bible/translations").json()
        assert translations[0]["id"] == "kjv"
        assert translations[0]["directory_name"] == "kjv"


class TestDiscoveryEndpoints:
    """Tests for discovery, validation and scanning."""

    def test_discover_without_sources(self, client):
        """No sources means an empty merge."""
        assert client.get(f"{API}/discover").json() == {"repositories": [], "errors": {}}

    def test_validate(self, client, builder):
        """Validation verdicts are returned as data."""
        directory = builder.translation("test-kjv")
        data = client.get(f"{API}/validate", params={"url": str(directory)}).json()
        assert data["valid"] is True

        data = client.get(
            f"{API}/validate", params={"url": "http://packages.example/kjv"}
        ).json()
        assert data["valid"] is False
        assert data["errors"][0]["code"] == "INSECURE_PROTOCOL"

    def test_manifest_errors_map_to_status(self, client, builder, tmp_path):
        """Policy refusals are 403; fetch failures are 502."""
        directory = builder.translation("test-kjv")
        response = client.get(f"{API}/manifest", params={"url": str(directory)})
        assert response.json()["repository"]["id"] == "test-kjv"

        response = client.get(
            f"{API}/manifest", params={"url": "http://packages.example/kjv"}
        )
        assert response.status_code == 403
        assert response.json()["code"] == "SECURITY_POLICY"

        response = client.get(f"{API}/manifest", params={"url": str(tmp_path / "none")})
        assert response.status_code == 502
        assert response.json()["error"] == "NetworkError"

    def test_scan(self, client, builder):
        """Scans list candidates with their verdicts."""
        builder.translation("test-kjv")
        data = client.post(f"{API}/scan", json={"path": str(builder.root)}).json()
        assert len(data["repositories"]) == 1
        assert data["repositories"][0]["validation"]["valid"] is True
        assert data["errors"] == []


class TestSourcesAndSettings:
    """Tests for source and settings management."""

    def test_source_management(self, client):
        """Sources can be added, toggled and removed."""
        url = "https://community.example/index.json"
        sources = client.post(
            f"{API}/sources", json={"url": url, "name": "Community"}
        ).json()
        assert [s["url"] for s in sources] == [url]
        assert sources[0]["type"] == "third-party"

        response = client.post(
            f"{API}/sources/enable", json={"url": url, "enabled": False}
        )
        assert response.json() == {"url": url, "changed": True}
        assert client.get(f"{API}/sources").json()[0]["enabled"] is False

        assert client.delete(f"{API}/sources", params={"url": url}).status_code == 200
        assert client.delete(f"{API}/sources", params={"url": url}).status_code == 404

    def test_settings(self, client):
        """Settings can be read and written."""
        assert client.get(f"{API}/settings/theme").json()["value"] == "system"
        client.put(f"{API}/settings/theme", json={"value": "dark"})
        assert client.get(f"{API}/settings/theme").json()["value"] == "dark"
        assert client.get(f"{API}/settings/missing").status_code == 404

    def test_clear_cache(self, client):
        """The manifest cache can be cleared."""
        assert client.post(f"{API}/cache/clear").json() == {"cleared": True}
