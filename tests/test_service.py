"""Tests for RepositoryService."""

import pytest
import pytest_asyncio

from scriptorium.repository.service import RepositoryService, ServiceNotInitialized
from scriptorium.repository.types import ImportOptions, ImportStage, RepositorySource


@pytest_asyncio.fixture
async def service(settings):
    service = RepositoryService(settings)
    await service.init()
    yield service
    await service.shutdown()


class TestLifecycle:
    """Tests for init and shutdown."""

    @pytest.mark.asyncio
    async def test_requires_init(self, settings):
        """Store operations fail before init."""
        service = RepositoryService(settings)
        assert not service.is_initialized
        with pytest.raises(ServiceNotInitialized):
            service.list_repositories()
        with pytest.raises(ServiceNotInitialized):
            await service.import_repository(ImportOptions("/nowhere"))

    @pytest.mark.asyncio
    async def test_init_migrates_and_is_idempotent(self, settings):
        """init creates the store under data_root and can run twice."""
        service = RepositoryService(settings)
        await service.init()
        await service.init()
        try:
            assert service.is_initialized
            assert settings.db_path.exists()
            assert service.get_setting("theme") == "system"
        finally:
            await service.shutdown()
        assert not service.is_initialized
        assert not service.db.is_connected


class TestOperations:
    """Tests for the operations exposed to host shells."""

    @pytest.mark.asyncio
    async def test_import_and_read(self, service, builder):
        """Imported content is readable through the service."""
        directory = builder.translation("test-kjv")
        result = await service.import_repository(ImportOptions(str(directory)))
        assert result.success, result.errors

        assert [r["id"] for r in service.list_repositories()] == ["test-kjv"]
        assert service.get_repository("test-kjv")["version"] == "1.0.0"
        books = service.get_books("test-kjv")
        assert [b["name"] for b in books] == ["Genesis", "Exodus", "Leviticus"]
        assert len(service.get_verses(books[1]["id"], 1)) == 16
        assert len(service.search_verses("of Leviticus")) == 10
        assert service.get_stats()["verses"] == 56

        assert service.delete_repository("test-kjv")
        assert not service.delete_repository("test-kjv")
        assert service.get_stats()["verses"] == 0

    @pytest.mark.asyncio
    async def test_parent_queries(self, service, builder):
        """Parents and their translations are listed."""
        directory = builder.parent("bible", {"kjv": [builder.make_book(1, [2])]})
        assert (await service.import_repository(ImportOptions(str(directory)))).success

        assert [p["id"] for p in service.get_parent_repositories()] == ["bible"]
        assert [t["id"] for t in service.get_translations("bible")] == ["kjv"]

    @pytest.mark.asyncio
    async def test_start_import(self, service, builder):
        """Background imports report progress and a result."""
        directory = builder.translation("test-kjv")
        run = service.start_import(ImportOptions(str(directory)))
        stages = [event.stage async for event in run.events()]
        result = await run.wait()
        assert result.success
        assert stages[-1] == ImportStage.COMPLETE

    @pytest.mark.asyncio
    async def test_validation_and_scan(self, service, builder):
        """Validation helpers delegate to the validator and discovery."""
        directory = builder.translation("test-kjv")
        assert (await service.validate_repository_url(str(directory))).valid
        manifest = await service.get_manifest(str(directory))
        assert service.validate_manifest(manifest).valid
        assert service.validate_book(builder.make_book(1, [1]), 1).valid
        assert not service.validate_book(builder.make_book(1, [1]), 2).valid

        scan = await service.scan_directory(str(builder.root))
        assert [c.manifest["repository"]["id"] for c in scan.repositories] == ["test-kjv"]

    @pytest.mark.asyncio
    async def test_sources_and_settings(self, service):
        """Sources and settings round-trip through the service."""
        url = "https://community.example/index.json"
        service.add_source(RepositorySource(url=url, name="Community"))
        assert service.enable_source(url, False)
        assert [s.enabled for s in service.get_sources()] == [False]
        assert service.remove_source(url)
        assert service.get_sources() == []

        service.set_setting("font_size", "18")
        assert service.get_all_settings()["font_size"] == "18"
