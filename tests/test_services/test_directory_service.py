"""Tests for segment-wise directory provisioning."""

from __future__ import annotations

from assetsync.exceptions import LocalProviderError, TransferError
from assetsync.providers.retry import DEFAULT_RETRIES
from assetsync.services.directory_service import DirectoryProvisioner
from assetsync.services.inventory_service import LocalInventory
from tests.conftest import FakeLocalServer


def _provisioner(local: FakeLocalServer, retries: int = DEFAULT_RETRIES) -> DirectoryProvisioner:
    return DirectoryProvisioner(local, LocalInventory(dirs={""}), retries=retries)


class TestDirectoryProvisioner:
    async def test_creates_every_missing_segment(self) -> None:
        local = FakeLocalServer()
        provisioner = _provisioner(local)

        created = await provisioner.ensure("//maps//dungeon/level1/")

        assert created == 3
        assert local.created == ["maps", "maps/dungeon", "maps/dungeon/level1"]
        assert {"maps/", "maps/dungeon/", "maps/dungeon/level1/"} <= provisioner.inventory.dirs

    async def test_known_segments_are_not_recreated(self) -> None:
        local = FakeLocalServer()
        local.dirs.add("maps")
        provisioner = DirectoryProvisioner(local, LocalInventory(dirs={"", "maps/"}))

        assert await provisioner.ensure("maps/dungeon/") == 1
        assert local.created == ["maps/dungeon"]

    async def test_already_exists_counts_as_success(self) -> None:
        local = FakeLocalServer()
        local.dirs.add("Music")
        provisioner = _provisioner(local)

        # The inventory does not know about it, the server reports EEXIST.
        created = await provisioner.ensure("Music/battle/")

        assert created == 1
        assert "Music/" in provisioner.inventory.dirs

    async def test_invalid_name_blacklists_segment(self) -> None:
        local = FakeLocalServer()
        local.invalid_names.add("bad.")
        provisioner = _provisioner(local)

        result = await provisioner.provision("art/bad./deep/")

        assert result.created == 1
        assert result.blacklisted == "art/bad./"
        assert provisioner.failed_folders == ["art/bad./"]
        assert provisioner.is_blacklisted("art/bad./deep/x.png")
        assert not provisioner.is_blacklisted("art/good/x.png")

    async def test_blacklisted_prefix_short_circuits_later_paths(self) -> None:
        local = FakeLocalServer()
        local.invalid_names.add("bad.")
        provisioner = _provisioner(local)
        await provisioner.ensure("bad./")
        local.created.clear()

        assert await provisioner.ensure("bad./child/") == 0
        assert local.created == []

    async def test_transient_failures_are_retried(self) -> None:
        local = FakeLocalServer()
        original = local.create_directory
        calls = 0

        async def _flaky(path: str) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TransferError("connection reset")
            await original(path)

        local.create_directory = _flaky  # type: ignore[method-assign]
        result = await _provisioner(local, retries=2).provision("a/")

        assert result.error is None
        assert result.blacklisted is None
        assert result.created == 1
        assert calls == 2

    async def test_gives_up_after_retry_budget(self) -> None:
        local = FakeLocalServer()
        calls = 0

        async def _broken(path: str) -> None:
            nonlocal calls
            calls += 1
            raise LocalProviderError("server exploded")

        local.create_directory = _broken  # type: ignore[method-assign]
        result = await _provisioner(local, retries=2).provision("a/")

        assert result.blacklisted is None
        assert result.error == "server exploded"
        assert calls == 3

    async def test_empty_path_is_noop(self) -> None:
        local = FakeLocalServer()
        assert await _provisioner(local).ensure("///") == 0
        assert local.created == []
