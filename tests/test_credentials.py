"""Tests for the per-session credential store."""

import json

import pytest

from pairhub.protocol.credentials import CredentialStore


@pytest.mark.asyncio
async def test_load_creates_fresh_credentials(tmp_path):
    folder = tmp_path / "session-a"

    store = await CredentialStore.load(folder)

    on_disk = json.loads((folder / "creds.json").read_text(encoding="utf-8"))
    assert on_disk == store.creds
    assert on_disk["registered"] is False


@pytest.mark.asyncio
async def test_load_is_stable(tmp_path):
    first = await CredentialStore.load(tmp_path / "a")
    second = await CredentialStore.load(tmp_path / "a")
    assert first.creds == second.creds


@pytest.mark.asyncio
async def test_folders_are_isolated(tmp_path):
    a = await CredentialStore.load(tmp_path / "a")
    b = await CredentialStore.load(tmp_path / "b")
    assert a.creds["noiseKey"] != b.creds["noiseKey"]


@pytest.mark.asyncio
async def test_apply_merges_and_persists(tmp_path):
    store = await CredentialStore.load(tmp_path / "a")
    noise = store.creds["noiseKey"]

    await store.apply({"registered": True, "me": {"id": "1@s.whatsapp.net"}})

    reloaded = await CredentialStore.load(tmp_path / "a")
    assert reloaded.creds["registered"] is True
    assert reloaded.creds["me"] == {"id": "1@s.whatsapp.net"}
    assert reloaded.creds["noiseKey"] == noise
    assert not (tmp_path / "a" / "creds.json.tmp").exists()


@pytest.mark.asyncio
async def test_malformed_file_raises(tmp_path):
    folder = tmp_path / "a"
    folder.mkdir()
    (folder / "creds.json").write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError):
        await CredentialStore.load(folder)
