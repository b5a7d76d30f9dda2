"""Unit tests for the Hub resolver with huggingface_hub patched out."""

import asyncio
import threading

import pytest

from asrkit import resolver as resolver_module
from asrkit.constants import DEFAULT_MODEL_REPO
from asrkit.models import ModelVariant
from asrkit.resolver import HubResolver, find_variant_folder, progress_tqdm


@pytest.fixture
def snapshot(tmp_path, monkeypatch):
    """Replace snapshot_download with a fake that lays out a repo on disk."""
    calls = []

    def fake_snapshot_download(repo_id, allow_patterns, token=None, local_dir=None, tqdm_class=None):
        calls.append(
            {
                "repo_id": repo_id,
                "allow_patterns": allow_patterns,
                "token": token,
                "local_dir": local_dir,
            }
        )
        root = tmp_path / "snapshot"
        for name in (
            "openai_whisper-tiny",
            "openai_whisper-tiny.en",
            "openai_whisper-large-v3",
            "distil-whisper_distil-large-v3",
        ):
            (root / name).mkdir(parents=True, exist_ok=True)
        if tqdm_class is not None:
            with tqdm_class(total=2) as bar:
                bar.update(1)
                bar.update(1)
        return str(root)

    monkeypatch.setattr(resolver_module, "snapshot_download", fake_snapshot_download)
    return calls


class TestFindVariantFolder:
    def test_exact_suffix_wins(self, tmp_path):
        for name in ("openai_whisper-tiny.en", "openai_whisper-tiny"):
            (tmp_path / name).mkdir()
        assert find_variant_folder(tmp_path, ModelVariant.TINY).name == "openai_whisper-tiny"
        assert find_variant_folder(tmp_path, ModelVariant.TINY_EN).name == "openai_whisper-tiny.en"

    def test_full_variant_preferred_over_distilled(self, tmp_path):
        for name in ("distil-whisper_distil-large-v3", "openai_whisper-large-v3"):
            (tmp_path / name).mkdir()
        assert find_variant_folder(tmp_path, ModelVariant.LARGE_V3).name == "openai_whisper-large-v3"

    def test_custom_prefix(self, tmp_path):
        for name in ("distil-whisper_distil-small.en", "acme-small.en"):
            (tmp_path / name).mkdir()
        folder = find_variant_folder(tmp_path, ModelVariant.SMALL_EN, prefix="acme-")
        assert folder.name == "acme-small.en"

    def test_substring_match(self, tmp_path):
        (tmp_path / "openai_whisper-large-v3_turbo").mkdir()
        folder = find_variant_folder(tmp_path, ModelVariant.LARGE_V3)
        assert folder.name == "openai_whisper-large-v3_turbo"

    def test_flat_repo_falls_back_to_root(self, tmp_path):
        (tmp_path / "AudioEncoder.pt").write_bytes(b"")
        assert find_variant_folder(tmp_path, ModelVariant.BASE) == tmp_path


class TestProgress:
    def test_forwards_completed_and_total(self):
        seen = []
        bar_class = progress_tqdm(lambda done, total: seen.append((done, total)))

        with bar_class(total=10, name="huggingface_hub.snapshot_download") as bar:
            bar.update(4)
            bar.update(6)

        assert seen == [(4, 10), (10, 10)]


class TestHubResolver:
    @pytest.mark.asyncio
    async def test_download_variant_folder(self, snapshot, tmp_path):
        resolver = HubResolver(download_base=tmp_path / "models", token="hf_test")
        progress = []

        folder = await resolver.download(
            ModelVariant.TINY, progress_callback=lambda done, total: progress.append(done)
        )

        assert folder.name == "openai_whisper-tiny"
        assert progress == [1, 2]
        assert snapshot == [
            {
                "repo_id": DEFAULT_MODEL_REPO,
                "allow_patterns": ["openai_whisper-tiny/*"],
                "token": "hf_test",
                "local_dir": str(tmp_path / "models" / DEFAULT_MODEL_REPO),
            }
        ]

    @pytest.mark.asyncio
    async def test_download_uses_hub_cache_without_base(self, snapshot):
        await HubResolver().download(ModelVariant.TINY_EN, "acme/whisper")
        assert snapshot[0]["local_dir"] is None
        assert snapshot[0]["allow_patterns"] == ["openai_whisper-tiny.en/*"]

    @pytest.mark.asyncio
    async def test_download_skips_distilled_folder(self, snapshot):
        folder = await HubResolver().download(ModelVariant.LARGE_V3, "acme/whisper")

        assert folder.name == "openai_whisper-large-v3"
        assert snapshot[0]["allow_patterns"] == ["openai_whisper-large-v3/*"]

    @pytest.mark.asyncio
    async def test_download_without_prefix_matches_suffix(self, snapshot):
        await HubResolver(folder_prefix=None).download(ModelVariant.TINY_EN)
        assert snapshot[0]["allow_patterns"] == ["*tiny.en/*"]

    @pytest.mark.asyncio
    async def test_background_downloads_are_shared(self, tmp_path, monkeypatch):
        started = threading.Event()
        finish = threading.Event()
        calls = []

        def slow_snapshot_download(repo_id, allow_patterns, token=None, **kwargs):
            calls.append(repo_id)
            started.set()
            finish.wait(5)
            (tmp_path / "openai_whisper-base").mkdir(exist_ok=True)
            return str(tmp_path)

        monkeypatch.setattr(resolver_module, "snapshot_download", slow_snapshot_download)
        resolver = HubResolver(background=True)

        first = asyncio.create_task(resolver.download(ModelVariant.BASE))
        await asyncio.to_thread(started.wait, 5)
        second = asyncio.create_task(resolver.download(ModelVariant.BASE))
        await asyncio.sleep(0.01)

        # A cancelled caller does not stop the shared download
        first.cancel()
        finish.set()
        folder = await second

        assert folder.name == "openai_whisper-base"
        assert calls == [DEFAULT_MODEL_REPO]
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_list_files(self, monkeypatch):
        class FakeApi:
            def __init__(self, token=None):
                self.token = token

            def list_repo_files(self, repo):
                return [
                    ".gitattributes",
                    "openai_whisper-tiny/AudioEncoder.pt",
                    "distil-whisper_distil-large-v3/TextDecoder.pt",
                    "custom_model/AudioEncoder.pt",
                ]

        monkeypatch.setattr(resolver_module, "HfApi", FakeApi)
        resolver = HubResolver()

        files = await resolver.list_files("acme/whisper", ["openai_*", "distil-whisper_*"])
        assert files == [
            "openai_whisper-tiny/AudioEncoder.pt",
            "distil-whisper_distil-large-v3/TextDecoder.pt",
        ]
        assert len(await resolver.list_files("acme/whisper", [])) == 4
